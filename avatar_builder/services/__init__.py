"""Service layer for folders, image placement and realtime notifications."""

from __future__ import annotations

from typing import Any, Optional

from flask import current_app

from ..extensions import db
from .cascade import CascadeDeletionPolicy  # noqa: F401
from .errors import (  # noqa: F401
    CycleError,
    DatastoreError,
    GalleryError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .folder_paths import ANY_SCOPE, FolderTree  # noqa: F401
from .folders import UNSET, FolderStore  # noqa: F401
from .images import ImageLibrary, ImageLocationBinding  # noqa: F401
from .notifications import RealtimeNotifier, notify  # noqa: F401
from .storage import LocalImageStorage


def image_storage() -> LocalImageStorage:
    return LocalImageStorage(current_app.config["GENERATED_DIR"])


def folder_store(character_id: Optional[str] = None) -> FolderStore:
    return FolderStore(db.session, image_storage(), character_id=character_id)


def image_binding(character_id: Any = ANY_SCOPE) -> ImageLocationBinding:
    return ImageLocationBinding(db.session, image_storage(), character_id=character_id)


def image_library() -> ImageLibrary:
    return ImageLibrary(db.session, image_storage())


__all__ = [
    "ANY_SCOPE",
    "CascadeDeletionPolicy",
    "CycleError",
    "DatastoreError",
    "FolderStore",
    "FolderTree",
    "GalleryError",
    "ImageLibrary",
    "ImageLocationBinding",
    "LocalImageStorage",
    "NotFoundError",
    "RealtimeNotifier",
    "StorageError",
    "UNSET",
    "ValidationError",
    "folder_store",
    "image_binding",
    "image_library",
    "image_storage",
    "notify",
]
