"""Persistence backends for documents, chat messages and reports."""
from __future__ import annotations

from typing import Optional

from .base import Repository
from .memory import InMemoryRepository


def create_repository(database_url: Optional[str] = None) -> Repository:
    """Return a SQL repository for ``database_url`` or an in-memory one when unset."""

    if not database_url:
        return InMemoryRepository()
    from .sql import SQLRepository

    return SQLRepository.from_url(database_url)


__all__ = ["InMemoryRepository", "Repository", "create_repository"]
