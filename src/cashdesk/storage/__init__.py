"""Persistence backends for cashdesk."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from .base import Store
from .json_store import JsonStore
from .mongo_store import MongoStore

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

_backend_factories: dict[str, Callable[[Settings], Store]] = {}


def register_backend(name: str, factory: Callable[[Settings], Store]) -> None:
    """Register a store factory under a backend name (e.g. "json")."""
    _backend_factories[name] = factory


def supported_backends() -> list[str]:
    return sorted(_backend_factories.keys())


def open_store(settings: Settings) -> Store:
    """
    Open the store selected by ``settings.storage``.

    Called once at startup; the result is shared by all requests.

    Raises:
        ValueError: If the backend name is unknown.
        StorageError: If the backend can't be reached.
    """
    factory = _backend_factories.get(settings.storage)
    if factory is None:
        raise ValueError(
            f"Unknown storage backend '{settings.storage}'. "
            f"Supported: {', '.join(supported_backends())}"
        )
    store = factory(settings)
    logger.info("Using %s storage backend", store.name)
    return store


register_backend("json", lambda s: JsonStore(s.data_dir))
register_backend("mongo", lambda s: MongoStore(s.mongodb_uri, s.db_name))

__all__ = [
    "Store",
    "JsonStore",
    "MongoStore",
    "open_store",
    "register_backend",
    "supported_backends",
]
