"""Filesystem placement of generated images.

Images live in ``<root>/<folder_id>/<filename>``; unfiled images sit directly
in ``<root>``. Folder directories are named by id so renames never touch disk.
"""
from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional, Union

from .errors import StorageError

PathLike = Union[str, Path]


class LocalImageStorage:
    def __init__(self, root: PathLike, url_prefix: str = "/generated") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def folder_directory(self, folder_id: Optional[str]) -> Path:
        if not folder_id:
            return self.root
        return self.root / _safe_segment(folder_id)

    def image_path(self, folder_id: Optional[str], filename: str) -> Path:
        return self.folder_directory(folder_id) / _safe_segment(filename)

    def image_url(self, folder_id: Optional[str], filename: str) -> str:
        if folder_id:
            return f"{self.url_prefix}/{folder_id}/{filename}"
        return f"{self.url_prefix}/{filename}"

    def ensure_folder_directory(self, folder_id: Optional[str]) -> Path:
        directory = self.folder_directory(folder_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to create directory {directory}: {exc}") from exc
        return directory

    def exists(self, folder_id: Optional[str], filename: str) -> bool:
        return self.image_path(folder_id, filename).is_file()

    def write(self, folder_id: Optional[str], filename: str, data: bytes) -> Path:
        self.ensure_folder_directory(folder_id)
        target = self.image_path(folder_id, filename)
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Unable to write {target}: {exc}") from exc
        return target

    def move(self, filename: str, source_folder_id: Optional[str], target_folder_id: Optional[str]) -> bool:
        """Relocate ``filename`` between folder directories.

        Returns ``False`` when nothing had to move: source and target are the
        same path, or the source file is absent.
        """
        source = self.image_path(source_folder_id, filename)
        target = self.image_path(target_folder_id, filename)
        if source == target or not source.exists():
            return False
        self.ensure_folder_directory(target_folder_id)
        try:
            os.replace(source, target)
        except OSError:
            try:
                shutil.move(str(source), str(target))
            except OSError as exc:
                raise StorageError(f"Unable to move {source} to {target}: {exc}") from exc
        return True

    def delete(self, folder_id: Optional[str], filename: str) -> bool:
        """Remove an image file; an already missing file is not an error."""
        target = self.image_path(folder_id, filename)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Unable to delete {target}: {exc}") from exc
        return True

    def remove_folder_directory(self, folder_id: str) -> bool:
        """Remove an empty folder directory; a non-empty one is kept."""
        directory = self.folder_directory(folder_id)
        if directory == self.root or not directory.is_dir():
            return False
        try:
            directory.rmdir()
        except OSError:
            return False
        return True


def _safe_segment(value: str) -> str:
    segment = str(value)
    if not segment or segment in {".", ".."} or "/" in segment or "\\" in segment:
        raise StorageError(f"Invalid path segment: {value!r}")
    return segment
