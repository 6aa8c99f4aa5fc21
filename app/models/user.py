import uuid
from datetime import datetime
from sqlalchemy import String, Boolean, Text, JSON, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.db import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    # null for accounts created through a social login
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # --- 2FA ---
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    two_factor_secret: Mapped[str | None] = mapped_column(Text, nullable=True)   # AES-GCM ciphertext
    backup_codes: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=True)  # sha256 hex, unused only

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    categories = relationship(
        "Category",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}
