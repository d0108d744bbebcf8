import json
import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from utils.client_ip import client_ip

logger = logging.getLogger(__name__)


def log_event(action: str, entity=None, entity_id=None, metadata=None):
    user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=client_ip(),
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata) if metadata else None
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError as exc:
        # audit failures never fail the request
        db.session.rollback()
        logger.error("Audit log write failed for %s: %s", action, exc)
