"""Folder deletion: re-home images one level up, then drop the subtree."""
from __future__ import annotations

from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Folder, Image
from .errors import DatastoreError, StorageError
from .folder_paths import FolderTree
from .records import CascadeResult
from .storage import LocalImageStorage

# (filename, moved from, moved to)
_Move = Tuple[str, Optional[str], Optional[str]]


class CascadeDeletionPolicy:
    """Deletes a folder and its descendants without deleting any image.

    Images in the affected subtree move to the deleted folder's parent, or
    become unfiled when the folder was at the root. Files are moved before the
    database is touched; the database changes are committed once, after every
    row update and deletion succeeded.
    """

    def __init__(self, session: Session, storage: LocalImageStorage) -> None:
        self.session = session
        self.storage = storage

    def apply(self, folder: Folder, tree: FolderTree) -> CascadeResult:
        folder_id = folder.id
        new_folder_id = folder.parent_id
        descendants = tree.descendants_breadth_first(folder_id)
        affected = [folder_id, *descendants]
        if new_folder_id in affected:
            # Only reachable when the stored parent links already form a loop.
            new_folder_id = None

        try:
            images = self.session.query(Image).filter(Image.folder_id.in_(affected)).all()
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load images for folder deletion.") from exc

        image_ids = [image.id for image in images]
        moves = self._move_files(images, new_folder_id)

        try:
            for image in images:
                image.folder_id = new_folder_id
                image.file_migrated = True
            self.session.flush()
            # Links inside the subtree are cleared first, then rows go deepest level first.
            self.session.query(Folder).filter(Folder.id.in_(affected)).update(
                {Folder.parent_id: None}, synchronize_session=False
            )
            for doomed_id in reversed(affected):
                self.session.query(Folder).filter(Folder.id == doomed_id).delete(synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            self._undo_moves(moves)
            raise DatastoreError("Unable to delete folder.") from exc

        if folder in self.session:
            self.session.expunge(folder)
        for removed_id in affected:
            if self.storage.folder_directory(removed_id).is_dir() and not self.storage.remove_folder_directory(removed_id):
                current_app.logger.warning("Folder directory not empty, keeping: %s", removed_id)

        current_app.logger.info(
            "Deleted folder %s with %d descendant(s); %d image(s) re-homed to %s",
            folder_id,
            len(descendants),
            len(image_ids),
            new_folder_id or "unfiled",
        )
        return CascadeResult(
            folder_id=folder_id,
            new_folder_id=new_folder_id,
            deleted_folder_ids=affected,
            rehomed_image_ids=image_ids,
        )

    def _move_files(self, images: List[Image], new_folder_id: Optional[str]) -> List[_Move]:
        moves: List[_Move] = []
        try:
            if images:
                self.storage.ensure_folder_directory(new_folder_id)
            for image in images:
                if self.storage.move(image.filename, image.folder_id, new_folder_id):
                    moves.append((image.filename, image.folder_id, new_folder_id))
        except StorageError:
            self._undo_moves(moves)
            raise
        return moves

    def _undo_moves(self, moves: List[_Move]) -> None:
        for filename, source, target in reversed(moves):
            try:
                self.storage.move(filename, target, source)
            except StorageError as exc:
                current_app.logger.warning("Could not restore %s to folder %s: %s", filename, source, exc)
