from app.models.user import User
from app.models.category import Category, CategoryType
