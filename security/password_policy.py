import re
from typing import List, Tuple

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")

_DEFAULTS = {
    "PASSWORD_MIN_LEN": 8,
    "PASSWORD_MAX_LEN": 128,
    "PASSWORD_REQUIRE_UPPER": True,
    "PASSWORD_REQUIRE_LOWER": True,
    "PASSWORD_REQUIRE_DIGIT": True,
    "PASSWORD_REQUIRE_SYMBOL": True,
}


def _cfg(config, name: str):
    if config is None:
        return _DEFAULTS[name]
    return config.get(name, _DEFAULTS[name])


def validate_password(pw, config=None) -> Tuple[bool, List[str]]:
    errors: List[str] = []

    if not isinstance(pw, str):
        return False, ["Password must be a string"]

    min_len = int(_cfg(config, "PASSWORD_MIN_LEN"))
    max_len = int(_cfg(config, "PASSWORD_MAX_LEN"))

    if len(pw) < min_len:
        errors.append(f"Password must be at least {min_len} characters")
    if len(pw) > max_len:
        errors.append(f"Password must be at most {max_len} characters")

    if _cfg(config, "PASSWORD_REQUIRE_UPPER") and not _UPPER.search(pw):
        errors.append("Password must include at least 1 uppercase letter")
    if _cfg(config, "PASSWORD_REQUIRE_LOWER") and not _LOWER.search(pw):
        errors.append("Password must include at least 1 lowercase letter")
    if _cfg(config, "PASSWORD_REQUIRE_DIGIT") and not _DIGIT.search(pw):
        errors.append("Password must include at least 1 number")
    if _cfg(config, "PASSWORD_REQUIRE_SYMBOL") and not _SYMBOL.search(pw):
        errors.append("Password must include at least 1 symbol")

    return (len(errors) == 0), errors


def require_admin_password(config) -> str:
    """
    Returns ADMIN_PASSWORD from config, or raises RuntimeError listing
    every policy violation. Called once by the app factory.
    """
    password = config.get("ADMIN_PASSWORD")
    if not password:
        raise RuntimeError(
            "Invalid environment variables:\n"
            "ADMIN_PASSWORD: required (admin console password)"
        )

    valid, errors = validate_password(password, config)
    if not valid:
        details = "\n".join(f"ADMIN_PASSWORD: {e}" for e in errors)
        raise RuntimeError(f"Invalid environment variables:\n{details}")
    return password
