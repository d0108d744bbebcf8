import logging
import threading
from datetime import datetime

from security.ban_store import BanStoreUnavailable

logger = logging.getLogger(__name__)


class GuardSweeper:
    """
    Periodically forgets idle guard records and expired bans.

    The guards never schedule anything themselves; the host process owns
    this sweeper and decides whether it runs (see GUARD_SWEEPER_ENABLED).
    """

    def __init__(self, app, interval_seconds: int = 300):
        self.app = app
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread = None

    def run_once(self, now=None) -> dict:
        now = now or datetime.utcnow()
        ext = self.app.extensions
        result = {
            "login_records": ext["login_guard"].cleanup(now),
            "vote_records": ext["vote_guard"].cleanup(now),
            "bans": 0,
        }
        with self.app.app_context():
            try:
                result["bans"] = ext["ban_store"].purge_expired(now)
            except BanStoreUnavailable:
                logger.warning("Skipping expired ban purge, ban store unavailable")
        return result

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Guard sweep failed")

    def start(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="guard-sweeper", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
