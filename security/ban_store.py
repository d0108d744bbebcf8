import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.ban import Ban

logger = logging.getLogger(__name__)


class BanStoreUnavailable(Exception):
    """Raised when the durable ban store cannot be read or written."""


class BanStore:
    """
    Durable identifier -> ban expiry mapping consulted by the vote guard.
    At most one entry per identifier; upsert replaces any previous ban.
    """

    def get(self, identifier: str) -> Optional[datetime]:
        raise NotImplementedError

    def upsert(self, identifier: str, banned_until: datetime) -> None:
        raise NotImplementedError

    def delete(self, identifier: str) -> None:
        raise NotImplementedError


class SqlBanStore(BanStore):
    """BanStore over the bans table. Needs an app context."""

    def get(self, identifier: str) -> Optional[datetime]:
        try:
            row = db.session.get(Ban, identifier)
        except SQLAlchemyError as exc:
            self._fail("read", identifier, exc)
        return row.banned_until if row else None

    def upsert(self, identifier: str, banned_until: datetime) -> None:
        try:
            row = db.session.get(Ban, identifier)
            if row is None:
                row = Ban(ip=identifier, banned_until=banned_until)
                db.session.add(row)
            else:
                row.banned_until = banned_until
            db.session.commit()
        except SQLAlchemyError as exc:
            self._fail("write", identifier, exc)

    def delete(self, identifier: str) -> None:
        try:
            Ban.query.filter_by(ip=identifier).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            self._fail("delete", identifier, exc)

    def list(self) -> List[Ban]:
        try:
            return Ban.query.order_by(Ban.banned_until.desc()).all()
        except SQLAlchemyError as exc:
            self._fail("list", None, exc)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        try:
            count = Ban.query.filter(Ban.banned_until <= now).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            self._fail("purge", None, exc)
        return count

    @staticmethod
    def _fail(op: str, identifier, exc: Exception):
        db.session.rollback()
        logger.error("Ban store %s failed (ip=%s): %s", op, identifier, exc)
        raise BanStoreUnavailable(f"ban store {op} failed") from exc
