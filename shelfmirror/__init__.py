"""Distribution package exposing the mirror's app and core services."""

from __future__ import annotations

from app.main import app, create_app
from app.models import ImageRef, Item, Snapshot
from app.services.collection_walker import CollectionWalker
from app.services.image_batch import BatchFetcher
from app.services.image_cache import ImageCache
from app.services.reconciler import Reconciler

__all__ = [
    "app",
    "create_app",
    "BatchFetcher",
    "CollectionWalker",
    "ImageCache",
    "ImageRef",
    "Item",
    "Reconciler",
    "Snapshot",
]
