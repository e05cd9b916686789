import logging
import threading

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class LiveFleetConfig(AppConfig):
    name = "livefleet"
    verbose_name = "Live fleet tracking"
    default_auto_field = "django.db.models.BigAutoField"

    _session = None
    _session_lock = threading.Lock()

    @property
    def session(self):
        """The process-wide fleet session, built on first use."""
        with self._session_lock:
            if self._session is None:
                from .services import build_session

                self._session = build_session()
        return self._session

    def ready(self):
        from .conf import get_config

        if get_config()["AUTOSTART"]:
            logger.info("Starting live fleet workers")
            self.session.start()
