"""Logging utilities with local timezone support."""

import logging
import time


class LocalTimeFormatter(logging.Formatter):
    """Formatter that uses local time instead of UTC."""

    converter = time.localtime

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        s = time.strftime("%Y-%m-%d %H:%M:%S", ct)
        return f"{s},{int(record.msecs):03d}"


class HealthCheckAccessFilter(logging.Filter):
    """Drop GET /health and GET /metrics from uvicorn access log."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        return "GET /health " not in msg and "GET /metrics " not in msg


def configure_logging(level: int = logging.INFO) -> None:
    """Install the local-time root handler once."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, LocalTimeFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(LocalTimeFormatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    # Suppress noisy per-request logs from the HTTP/LLM clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
