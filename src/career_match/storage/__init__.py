"""Persistence layer."""

from career_match.storage.repository import InMemoryRepository

__all__ = ["InMemoryRepository"]
