import hashlib
import hmac
import secrets
import string
from typing import NamedTuple

ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


class BackupCodeCheck(NamedTuple):
    valid: bool
    remaining_hashes: list[str]


def normalize_code(code: str) -> str:
    return code.strip().replace(" ", "").upper()


def generate_backup_codes(count: int = 10) -> list[str]:
    codes: list[str] = []
    while len(codes) < count:
        code = "".join(secrets.choice(ALPHABET) for _ in range(CODE_LENGTH))
        if code not in codes:
            codes.append(code)
    return codes


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()


def hash_backup_codes(codes: list[str]) -> list[str]:
    return [hash_backup_code(c) for c in codes]


def verify_and_consume(code: str, stored_hashes: list[str]) -> BackupCodeCheck:
    """Check a backup code and drop its hash from the list on a match.

    Only the first matching hash is removed. The input list is not mutated.
    """
    if not code or not stored_hashes:
        return BackupCodeCheck(False, list(stored_hashes or []))

    candidate = hash_backup_code(code)
    match = -1
    # scan the whole list so timing does not reveal the position
    for i, stored in enumerate(stored_hashes):
        if hmac.compare_digest(candidate, stored) and match == -1:
            match = i

    if match == -1:
        return BackupCodeCheck(False, list(stored_hashes))
    return BackupCodeCheck(True, stored_hashes[:match] + stored_hashes[match + 1:])
