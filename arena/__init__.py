"""
arena - Tournament server for Smackdown

Hosts brackets and the score report workflow over HTTP, backed by SQLite.
The arena never decides a result itself; it stores what the core decides.
"""

from .server import app
from .db import ArenaDB

__all__ = ["app", "ArenaDB"]
