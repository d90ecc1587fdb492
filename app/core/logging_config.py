"""
Logging setup shared by the Celery worker and the operator scripts.

Plain text lines by default; JSON lines (python-json-logger) when
LOG_FORMAT=json so log shippers can parse task prefixes and levels.
"""
import logging
import sys

from pythonjsonlogger import jsonlogger

from app.core.config import settings

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def setup_logging(level: str = None, log_format: str = None) -> None:
    """Configure the root logger once per process."""
    global _configured
    if _configured:
        return

    level = (level or settings.LOG_LEVEL).upper()
    log_format = (log_format or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Third-party clients are chatty at INFO
    for noisy in ("urllib3", "minio", "kombu"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
