# authcore Core Module
from .config import Settings, get_settings
from .database import Base, create_engine, create_session_maker
from .logging import setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "Base",
    "create_engine",
    "create_session_maker",
]
