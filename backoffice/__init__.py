"""
backoffice - SQLite store and HTTP front for prizepool

Holds events, rosters, the catalog, the spent-pool ledger and preview
artifacts. The server is a thin FastAPI layer over PrizeDesk.
"""

from .db import BackofficeDB
from .server import app

__all__ = ["app", "BackofficeDB"]
