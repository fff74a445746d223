"""Primary-store access (PostgreSQL)."""

from .connection import get_connection, init_db
from .storage import AnalysisStorage

__all__ = ["AnalysisStorage", "get_connection", "init_db"]
