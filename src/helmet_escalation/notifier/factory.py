"""Build the configured notifier from settings."""

from __future__ import annotations

import logging
from typing import Optional

from .base import Notifier, create_registered_notifier
from ..settings import NotifierSettings, get_settings

logger = logging.getLogger(__name__)


def build_notifier(settings: Optional[NotifierSettings] = None) -> Notifier:
    """Instantiate ``settings.driver``; Twilio without credentials degrades to dry-run."""

    settings = settings or get_settings().notifier
    driver = settings.driver
    if driver == "twilio" and not settings.has_credentials:
        logger.warning("Twilio credentials not set. Deliveries will only be logged (dry-run).")
        driver = "dry-run"
    return create_registered_notifier(driver, settings.model_dump())


__all__ = ["build_notifier"]
