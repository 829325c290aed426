from src.database.db import db

__all__ = ["db"]
