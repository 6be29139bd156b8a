"""Image placement: moves, deletes, saves and listings.

The database pointer (``images.folder_id``) and the file location under the
generated directory are kept in step. Files are moved before the row is
updated and moved back if the commit fails. Deletes remove the file first and
the row second, so a crash can leave an orphaned file but never a row
pointing at a missing file.
"""
from __future__ import annotations

import base64
import binascii
import io
import re
import uuid
import zipfile
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy import false, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Folder, Image
from .errors import DatastoreError, NotFoundError, StorageError, ValidationError
from .folder_paths import ANY_SCOPE, FolderTree
from .records import GENERATION_FIELDS, DeleteResult, ImagePage, ImageRecord, MoveResult
from .storage import LocalImageStorage

UNFILED_FILTERS = {"null", "unfiled"}

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


class ImageLocationBinding:
    """Moves and deletes images.

    With a ``character_id`` (``None`` for the default forest) target folders
    must belong to that scope; ``ANY_SCOPE`` accepts any folder.
    """

    def __init__(self, session: Session, storage: LocalImageStorage, *, character_id: Any = ANY_SCOPE) -> None:
        self.session = session
        self.storage = storage
        self.character_id = character_id

    def move_one(self, image_id: str, target_folder_id: Optional[str]) -> ImageRecord:
        image = self._require_image(image_id)
        target_folder_id = self._require_target(target_folder_id)

        moved = self._relocate(image, target_folder_id)
        source_folder_id = image.folder_id
        image.folder_id = target_folder_id
        image.file_migrated = True
        self._commit(
            "Unable to move image.",
            [(image.filename, source_folder_id, target_folder_id)] if moved else [],
        )
        return image_record(image, self.storage, FolderTree.load(self.session))

    def move_many(self, image_ids: Sequence[str], target_folder_id: Optional[str]) -> MoveResult:
        target_folder_id = self._require_target(target_folder_id)
        images, missing = self._load_many(image_ids)

        moves: List[Tuple[str, Optional[str], Optional[str]]] = []
        try:
            for image in images:
                if self._relocate(image, target_folder_id):
                    moves.append((image.filename, image.folder_id, target_folder_id))
        except StorageError:
            self._undo_moves(moves)
            raise

        for image in images:
            image.folder_id = target_folder_id
            image.file_migrated = True
        moved_ids = [image.id for image in images]
        self._commit("Unable to move images.", moves)

        if missing:
            current_app.logger.info("Bulk move skipped %d missing image(s)", len(missing))
        return MoveResult(
            moved_count=len(moved_ids),
            folder_id=target_folder_id,
            moved_ids=moved_ids,
            missing_ids=missing,
        )

    def delete_one(self, image_id: str) -> None:
        image = self._require_image(image_id)
        self.storage.delete(image.folder_id, image.filename)
        self.session.delete(image)
        self._commit("Unable to delete image.", [])

    def delete_many(self, image_ids: Sequence[str]) -> DeleteResult:
        images, missing = self._load_many(image_ids)
        deleted_ids: List[str] = []
        try:
            for image in images:
                self.storage.delete(image.folder_id, image.filename)
                deleted_ids.append(image.id)
                self.session.delete(image)
        except StorageError:
            # Rows whose files are already gone are still removed.
            current_app.logger.exception("Bulk delete stopped after %d image(s)", len(deleted_ids))
            self._commit("Unable to delete images.", [])
            raise
        self._commit("Unable to delete images.", [])
        return DeleteResult(deleted_count=len(deleted_ids), deleted_ids=deleted_ids, missing_ids=missing)

    # ---------------- helpers ----------------
    def _relocate(self, image: Image, target_folder_id: Optional[str]) -> bool:
        source = self.storage.image_path(image.folder_id, image.filename)
        target = self.storage.image_path(target_folder_id, image.filename)
        if source == target:
            return False
        self.storage.ensure_folder_directory(target_folder_id)
        if not source.exists():
            current_app.logger.warning(
                "Image file %s missing from %s; updating folder pointer only",
                image.filename,
                image.folder_id or "unfiled",
            )
            return False
        return self.storage.move(image.filename, image.folder_id, target_folder_id)

    def _require_image(self, image_id: Optional[str]) -> Image:
        if not image_id:
            raise NotFoundError("Image not found.")
        try:
            image = self.session.get(Image, image_id)
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load image.") from exc
        if image is None:
            raise NotFoundError("Image not found.")
        return image

    def _require_target(self, folder_id: Optional[str]) -> Optional[str]:
        if not folder_id:
            return None
        try:
            folder = self.session.get(Folder, folder_id)
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load folder.") from exc
        if folder is None or (self.character_id is not ANY_SCOPE and folder.character_id != self.character_id):
            raise NotFoundError("Folder not found.")
        return folder.id

    def _load_many(self, image_ids: Sequence[str]) -> Tuple[List[Image], List[str]]:
        wanted = _unique(image_ids)
        if not wanted:
            return [], []
        try:
            rows = self.session.query(Image).filter(Image.id.in_(wanted)).all()
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load images.") from exc
        by_id = {image.id: image for image in rows}
        images = [by_id[image_id] for image_id in wanted if image_id in by_id]
        missing = [image_id for image_id in wanted if image_id not in by_id]
        return images, missing

    def _commit(self, message: str, moves: List[Tuple[str, Optional[str], Optional[str]]]) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            self._undo_moves(moves)
            raise DatastoreError(message) from exc

    def _undo_moves(self, moves: List[Tuple[str, Optional[str], Optional[str]]]) -> None:
        for filename, source, target in reversed(moves):
            try:
                self.storage.move(filename, target, source)
            except StorageError as exc:
                current_app.logger.warning("Could not restore %s to folder %s: %s", filename, source, exc)


class ImageLibrary:
    """Saving new generations and browsing the gallery."""

    def __init__(self, session: Session, storage: LocalImageStorage) -> None:
        self.session = session
        self.storage = storage

    def save(
        self,
        image_data: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
        folder_id: Optional[str] = None,
    ) -> ImageRecord:
        payload = decode_image_data(image_data)
        folder_id = folder_id or None
        if folder_id is not None and self.session.get(Folder, folder_id) is None:
            raise NotFoundError("Folder not found.")

        image_id = str(uuid.uuid4())
        filename = f"{image_id}.png"
        self.storage.write(folder_id, filename, payload)

        image = Image(id=image_id, filename=filename, folder_id=folder_id, file_migrated=True)
        for key, value in (metadata or {}).items():
            if key in GENERATION_FIELDS:
                setattr(image, key, value)
        self.session.add(image)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.storage.delete(folder_id, filename)
            raise DatastoreError("Unable to save image.") from exc

        return image_record(image, self.storage, FolderTree.load(self.session))

    def get(self, image_id: str) -> ImageRecord:
        image = self.session.get(Image, image_id)
        if image is None:
            raise NotFoundError("Image not found.")
        return image_record(image, self.storage, FolderTree.load(self.session))

    def list(self, folder_filter: Optional[str] = None, *, limit: int = 50, offset: int = 0) -> ImagePage:
        """Newest images first.

        ``folder_filter`` is ``None`` for every image, ``"unfiled"`` (or
        ``"null"``) for images without a folder, or a folder id, in which case
        images of all its descendant folders are included.
        """
        limit = max(1, int(limit))
        offset = max(0, int(offset))
        tree = FolderTree.load(self.session)

        query = self.session.query(Image)
        if folder_filter in UNFILED_FILTERS:
            query = query.filter(Image.folder_id.is_(None))
        elif folder_filter:
            folder_ids = [folder_filter, *tree.descendant_ids(folder_filter)]
            query = query.filter(Image.folder_id.in_(folder_ids))

        try:
            total = query.count()
            rows = query.order_by(Image.created_at.desc(), Image.id.asc()).offset(offset).limit(limit).all()
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to list images.") from exc

        images = [image_record(row, self.storage, tree) for row in rows]
        return ImagePage(images=images, total=total, has_more=offset + len(images) < total)

    def organize_existing_files(self) -> int:
        """Move legacy images stored flat in the generated directory into their folder.

        Returns the number of rows marked as migrated.
        """
        try:
            pending = (
                self.session.query(Image)
                .filter(Image.folder_id.isnot(None), or_(Image.file_migrated.is_(None), Image.file_migrated == false()))
                .all()
            )
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load images awaiting migration.") from exc

        migrated = 0
        for image in pending:
            if self.storage.exists(None, image.filename):
                try:
                    self.storage.move(image.filename, None, image.folder_id)
                except StorageError as exc:
                    current_app.logger.warning("Failed to move %s: %s", image.filename, exc)
                    continue
            elif not self.storage.exists(image.folder_id, image.filename):
                continue
            image.file_migrated = True
            migrated += 1

        if migrated:
            try:
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise DatastoreError("Unable to record migrated images.") from exc
            current_app.logger.info("Organized %d existing image file(s) into folders", migrated)
        return migrated

    def build_archive(self, image_ids: Iterable[str]) -> bytes:
        wanted = _unique(image_ids)
        rows = self.session.query(Image).filter(Image.id.in_(wanted)).all() if wanted else []
        by_id = {image.id: image for image in rows}

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for image_id in wanted:
                image = by_id.get(image_id)
                if image is None:
                    continue
                path = self.storage.image_path(image.folder_id, image.filename)
                if path.is_file():
                    archive.write(path, arcname=image.filename)
        return buffer.getvalue()


def decode_image_data(image_data: Optional[str]) -> bytes:
    if not image_data or not isinstance(image_data, str):
        raise ValidationError("imageData is required.")
    encoded = _DATA_URL_PREFIX.sub("", image_data.strip(), count=1)
    try:
        payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("imageData is not valid base64.") from exc
    if not payload:
        raise ValidationError("imageData is empty.")
    return payload


def image_record(image: Image, storage: LocalImageStorage, tree: FolderTree) -> ImageRecord:
    folder_path = tree.path(image.folder_id)
    return ImageRecord.from_row(
        image,
        url=storage.image_url(image.folder_id, image.filename),
        folder_name=folder_path[-1] if folder_path else None,
        folder_path=tree.path_string(image.folder_id),
    )


def _unique(values: Iterable[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values or ():
        if isinstance(value, str) and value:
            seen.setdefault(value, None)
    return list(seen)
