import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.admin_session import AdminSession
from utils.client_ip import client_ip

def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def create_session() -> tuple[str, AdminSession]:
    """
    Creates a server-side admin session and returns (raw token, row).
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)

    lifetime = current_app.config.get("ADMIN_TOKEN_LIFETIME_SECONDS", 86400)
    expires_at = datetime.utcnow() + timedelta(seconds=lifetime)

    user_agent = (request.headers.get("User-Agent") or "")[:255]

    row = AdminSession(
        token_hash=_hash_token(raw_token),
        expires_at=expires_at,
        ip=client_ip(),
        user_agent=user_agent,
    )
    db.session.add(row)
    db.session.commit()
    return raw_token, row

def bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None

def get_session(raw_token: str):
    if not raw_token:
        return None

    sess = (
        AdminSession.query
        .filter_by(token_hash=_hash_token(raw_token), revoked=False)
        .first()
    )
    if not sess:
        return None

    now = datetime.utcnow()
    if sess.expires_at <= now:
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess

def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = AdminSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True
