import bcrypt
from flask import current_app

def hash_password(plain_password: str, rounds: int = 12) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")

def verify_password(plain_password, password_hash: str) -> bool:
    if not isinstance(plain_password, str) or not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False

def verify_admin_key(key) -> bool:
    """
    Checks a submitted admin key against the hash computed at startup.
    The plain ADMIN_PASSWORD is never compared directly.
    """
    return verify_password(key, current_app.extensions["admin_password_hash"])
