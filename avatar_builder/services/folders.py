"""Validated CRUD on the folder forest of one scope."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Character, Folder, Image
from .cascade import CascadeDeletionPolicy
from .errors import CycleError, DatastoreError, NotFoundError, ValidationError
from .folder_paths import FolderTree
from .records import CascadeResult, FolderRecord
from .storage import LocalImageStorage


class _Unset:
    def __repr__(self) -> str:  # pragma: no cover
        return "UNSET"


UNSET: Any = _Unset()


class FolderStore:
    """Folders belonging to one scope.

    A scope is a ``character_id``; ``None`` is the default single-tenant
    forest. Parents must live in the same scope as their children.
    """

    def __init__(
        self,
        session: Session,
        storage: LocalImageStorage,
        *,
        character_id: Optional[str] = None,
    ) -> None:
        self.session = session
        self.storage = storage
        self.character_id = character_id

    # ---------------- reads ----------------
    def tree(self) -> FolderTree:
        return FolderTree.load(self.session, self.character_id)

    def get(self, folder_id: str) -> FolderRecord:
        folder = self._require_folder(folder_id)
        tree = self.tree()
        counts = self._direct_counts([folder.id, *tree.descendant_ids(folder.id)])
        return self._record(folder, tree, counts)

    def list(self) -> List[FolderRecord]:
        try:
            folders = (
                self.session.query(Folder)
                .filter(Folder.character_id == self.character_id)
                .order_by(Folder.name.asc(), Folder.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to list folders.") from exc
        tree = FolderTree((folder.id, folder.parent_id, folder.name) for folder in folders)
        counts = self._direct_counts([folder.id for folder in folders])
        return [self._record(folder, tree, counts) for folder in folders]

    def nested(self) -> List[Dict[str, Any]]:
        records = self.list()
        tree = FolderTree((record.id, record.parent_id, record.name) for record in records)
        extra = {
            record.id: {
                "description": record.description,
                "image_count": record.image_count,
                "total_image_count": record.total_image_count,
            }
            for record in records
        }
        return tree.build_tree(extra)

    # ---------------- writes ----------------
    def create(
        self,
        name: Optional[str],
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> FolderRecord:
        clean_name = _clean_name(name)
        if self.character_id is not None and self.session.get(Character, self.character_id) is None:
            raise NotFoundError("Character not found.")
        parent_id = parent_id or None
        if parent_id is not None:
            self._require_folder(parent_id, message="Parent folder not found.")

        folder = Folder(
            name=clean_name,
            description=_clean_description(description),
            parent_id=parent_id,
            character_id=self.character_id,
        )
        self.session.add(folder)
        try:
            self.session.flush()
            self.storage.ensure_folder_directory(folder.id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise DatastoreError("Unable to create folder.") from exc
        except Exception:
            self.session.rollback()
            raise

        current_app.logger.info("Created folder %s (%s) under %s", folder.id, folder.name, parent_id or "root")
        return self.get(folder.id)

    def update(
        self,
        folder_id: str,
        *,
        name: Any = UNSET,
        description: Any = UNSET,
        parent_id: Any = UNSET,
    ) -> FolderRecord:
        folder = self._require_folder(folder_id)

        changes: Dict[str, Any] = {}
        if name is not UNSET:
            changes["name"] = _clean_name(name)
        if description is not UNSET:
            changes["description"] = _clean_description(description)
        if parent_id is not UNSET:
            new_parent = parent_id or None
            if new_parent != folder.parent_id:
                if new_parent is not None:
                    if new_parent == folder.id:
                        raise CycleError("A folder cannot be its own parent.")
                    self._require_folder(new_parent, message="Parent folder not found.")
                    if self.tree().would_cycle(folder.id, new_parent):
                        raise CycleError("Circular folder reference detected.")
            changes["parent_id"] = new_parent

        for attribute, value in changes.items():
            setattr(folder, attribute, value)
        try:
            self.session.flush()
            self.storage.ensure_folder_directory(folder.id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise DatastoreError("Unable to update folder.") from exc
        except Exception:
            self.session.rollback()
            raise

        return self.get(folder.id)

    def delete(self, folder_id: str) -> CascadeResult:
        folder = self._require_folder(folder_id)
        policy = CascadeDeletionPolicy(self.session, self.storage)
        return policy.apply(folder, self.tree())

    def delete_all(self) -> List[CascadeResult]:
        """Delete every folder of the scope, root folders first.

        Images of the scope end up unfiled. Each root subtree is its own
        transaction, so a failure leaves the remaining subtrees in place.
        """
        results: List[CascadeResult] = []
        tree = self.tree()
        while len(tree):
            roots = [folder_id for folder_id in tree.ids() if tree.parent_of(folder_id) not in tree]
            # A scope holding only a stored cycle has no root.
            results.append(self.delete(roots[0] if roots else tree.ids()[0]))
            tree = self.tree()
        return results

    # ---------------- helpers ----------------
    def _require_folder(self, folder_id: Optional[str], *, message: str = "Folder not found.") -> Folder:
        if not folder_id:
            raise NotFoundError(message)
        try:
            folder = self.session.get(Folder, folder_id)
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load folder.") from exc
        if folder is None or folder.character_id != self.character_id:
            raise NotFoundError(message)
        return folder

    def _direct_counts(self, folder_ids: List[str]) -> Dict[str, int]:
        if not folder_ids:
            return {}
        try:
            rows = (
                self.session.query(Image.folder_id, func.count(Image.id))
                .filter(Image.folder_id.in_(folder_ids))
                .group_by(Image.folder_id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to count images.") from exc
        return {folder_id: count for folder_id, count in rows}

    @staticmethod
    def _record(folder: Folder, tree: FolderTree, counts: Dict[str, int]) -> FolderRecord:
        direct = counts.get(folder.id, 0)
        total = direct + sum(counts.get(child, 0) for child in tree.descendant_ids(folder.id))
        return FolderRecord.from_row(
            folder,
            image_count=direct,
            total_image_count=total,
            path=tree.path_string(folder.id),
        )


def _clean_name(name: Any) -> str:
    if name is None:
        raise ValidationError("Folder name is required.")
    if not isinstance(name, str):
        raise ValidationError("Folder name must be a string.")
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("Folder name is required.")
    return cleaned


def _clean_description(description: Any) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("Folder description must be a string.")
    return description.strip() or None
