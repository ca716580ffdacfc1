"""Structured activity log shared by the auth flow and the role areas."""

import logging

logger = logging.getLogger("campus_booking.activity")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_activity(level: str, message: str, **context) -> None:
    logger.log(_LEVELS.get(level, logging.INFO), "%s %s", message, context, extra={"activity": context})
