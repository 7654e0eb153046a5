"""Persistence layer: models, the Database service object and repositories."""

from certprep.db.database import Database

__all__ = ["Database"]
