"""Request-scoped log trail returned to the caller alongside errors."""
import logging
import time
from typing import List, Dict, Any, Optional


class RequestLog:
    """Collects log lines for one request and forwards them to ``logging``."""

    def __init__(self, name: str = "bookresolver.request", logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(name)
        self._entries: List[Dict[str, Any]] = []

    def _append(self, kind: str, message: str):
        self._entries.append({
            "type": kind,
            "message": message,
            "timestamp": int(time.time() * 1000),
        })

    def log(self, message: str):
        self._append("log", message)
        self._logger.info(message)

    def error(self, message: str):
        self._append("error", message)
        self._logger.error(message)

    def get_logs(self) -> List[Dict[str, Any]]:
        return list(self._entries)
