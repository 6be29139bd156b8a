"""Error types raised by the gallery service layer."""
from __future__ import annotations


class GalleryError(RuntimeError):
    """Base class for folder and image failures."""

    status_code = 500


class ValidationError(GalleryError):
    """Raised when a request payload is malformed, e.g. an empty folder name."""

    status_code = 400


class NotFoundError(GalleryError):
    """Raised when a referenced folder, image or character does not exist in scope."""

    status_code = 404


class CycleError(GalleryError):
    """Raised when re-parenting a folder would make it its own ancestor."""

    status_code = 400


class StorageError(GalleryError):
    """Raised when a file operation on the generated images directory fails."""


class DatastoreError(GalleryError):
    """Raised when the database rejects a read or write."""
