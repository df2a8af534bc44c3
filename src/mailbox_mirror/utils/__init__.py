"""Utility functions for Mailbox Mirror."""

import logging

import structlog

from mailbox_mirror.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog filtering from ``settings.log_level``.

    Unknown level names fall back to INFO.
    """

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
