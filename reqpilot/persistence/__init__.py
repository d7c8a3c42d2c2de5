"""Persistence layer for stored model configurations."""

from reqpilot.persistence.config_store import ConfigStore
from reqpilot.persistence.database import close_db, init_db

__all__ = ["ConfigStore", "close_db", "init_db"]
