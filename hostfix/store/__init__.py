"""Durable record store (SQLite for development, Postgres in production)."""

from hostfix.store.db import execute, init_db
from hostfix.store import records

__all__ = ["execute", "init_db", "records"]
