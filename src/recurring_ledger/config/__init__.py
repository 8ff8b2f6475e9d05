"""Configuration module for the recurring ledger worker."""

from recurring_ledger.config.logging import configure_logging
from recurring_ledger.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging"]
