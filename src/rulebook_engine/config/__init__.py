"""Configuration module for the rulebook engine."""

from rulebook_engine.config.holidays import holiday_dates, load_holiday_calendar
from rulebook_engine.config.logging import configure_logging, get_logger
from rulebook_engine.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "holiday_dates",
    "load_holiday_calendar",
]
