import unicodedata


def normalize_name(value: str) -> str:
    """Lowercase and strip accents so "Jösé" and "jose" match in search."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def clean_player_name(value):
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def clean_message(value, max_length: int):
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:max_length] if value else None
