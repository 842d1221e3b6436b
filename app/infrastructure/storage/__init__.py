"""
Storage provider implementations.
"""
from .memory import InMemoryStorageService

__all__ = ["InMemoryStorageService"]
