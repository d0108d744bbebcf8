from flask import request

UNKNOWN_CLIENT = "unknown"


def normalize_identifier(value) -> str:
    """Key used by the guards; blank or missing addresses share one bucket."""
    if not isinstance(value, str):
        return UNKNOWN_CLIENT
    value = value.strip()
    return value[:64] if value else UNKNOWN_CLIENT


def client_ip() -> str:
    # remote_addr is rewritten by ProxyFix only when TRUSTED_PROXY_COUNT > 0
    return normalize_identifier(request.remote_addr)
