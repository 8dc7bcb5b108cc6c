from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class Notifier:
    """Client-facing notification boundary. Called only after a publish has committed."""

    def notify_client_packet_published(self, user_id: int, packet_id: int) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Default backend: writes the notification to the application log."""

    def notify_client_packet_published(self, user_id: int, packet_id: int) -> None:
        logger.info("NOTIFY: packet published user_id=%s packet_id=%s", user_id, packet_id)


def notifier_from_config(config: dict) -> Notifier:
    backend = (config.get("NOTIFIER_BACKEND") or "log").strip().lower()
    if backend != "log":
        logger.warning("Unknown NOTIFIER_BACKEND=%r; falling back to log notifier", backend)
    return LogNotifier()
