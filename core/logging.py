"""Structured logging utilities for Hair Director Backend"""

import json
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from config.settings import settings

LOGGER_NAME = "hairdirector"

# Chatty third-party loggers (request bodies at DEBUG)
_QUIET_LOGGERS = ("urllib3", "botocore", "google_genai", "httpx")


def setup_logging() -> logging.Logger:
    """Configure root logging once and return the application logger"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logging.getLogger(LOGGER_NAME)


logger = setup_logging()


def mask_client_id(client_id: Optional[str]) -> str:
    """abcdef1234567890 -> abcdef12..."""
    if not client_id:
        return "-"
    return f"{client_id[:8]}..." if len(client_id) > 8 else client_id


def log_structured(event_type: str, data: Dict[str, Any], client_id: Optional[str] = None) -> None:
    """
    Emit one JSON line for CloudWatch Logs Insights queries

    Args:
        event_type: Event name (e.g., "analysis_start", "history_saved", "payment_return")
        data: Event payload; non-serializable values are stringified
        client_id: Tab id, logged masked
    """
    log_entry = {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "event_type": event_type,
        **data
    }
    if client_id is not None:
        log_entry["client"] = mask_client_id(client_id)
    logger.info(json.dumps(log_entry, ensure_ascii=False, default=str))
