"""Typed records returned by the service layer.

ORM rows never leave the services; they are mapped into these dataclasses
at the datastore boundary so the blueprints work with a fixed shape.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import DatastoreError


def _require(row: Any, attribute: str, expected: type, *, nullable: bool = False) -> Any:
    value = getattr(row, attribute, None)
    if value is None:
        if nullable:
            return None
        raise DatastoreError(f"{type(row).__name__} row is missing '{attribute}'.")
    if not isinstance(value, expected):
        raise DatastoreError(
            f"{type(row).__name__}.{attribute} has type {type(value).__name__}, "
            f"expected {expected.__name__}."
        )
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class FolderRecord:
    id: str
    name: str
    description: Optional[str]
    parent_id: Optional[str]
    character_id: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    image_count: int = 0
    total_image_count: int = 0
    path: str = ""

    @classmethod
    def from_row(cls, row: Any, **annotations: Any) -> "FolderRecord":
        return cls(
            id=_require(row, "id", str),
            name=_require(row, "name", str),
            description=_require(row, "description", str, nullable=True),
            parent_id=_require(row, "parent_id", str, nullable=True),
            character_id=_require(row, "character_id", str, nullable=True),
            created_at=_require(row, "created_at", datetime, nullable=True),
            updated_at=_require(row, "updated_at", datetime, nullable=True),
            **annotations,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _isoformat(self.created_at)
        data["updated_at"] = _isoformat(self.updated_at)
        return data


GENERATION_FIELDS = (
    "positive_prompt",
    "negative_prompt",
    "model",
    "orientation",
    "width",
    "height",
    "batch_size",
    "sampler_name",
    "scheduler",
    "steps",
    "cfg_scale",
    "seed",
    "adetailer_enabled",
    "adetailer_model",
    "loras",
    "info_json",
)


@dataclass
class ImageRecord:
    id: str
    filename: str
    folder_id: Optional[str]
    file_migrated: bool
    url: str
    folder_name: Optional[str] = None
    folder_path: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(
        cls,
        row: Any,
        *,
        url: str,
        folder_name: Optional[str] = None,
        folder_path: Optional[str] = None,
    ) -> "ImageRecord":
        return cls(
            id=_require(row, "id", str),
            filename=_require(row, "filename", str),
            folder_id=_require(row, "folder_id", str, nullable=True),
            file_migrated=bool(getattr(row, "file_migrated", False)),
            url=url,
            folder_name=folder_name,
            folder_path=folder_path or None,
            created_at=_require(row, "created_at", datetime, nullable=True),
            metadata={name: getattr(row, name, None) for name in GENERATION_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {key: value for key, value in asdict(self).items() if key != "metadata"}
        data["created_at"] = _isoformat(self.created_at)
        data.update(self.metadata)
        return data


@dataclass
class CascadeResult:
    folder_id: str
    new_folder_id: Optional[str]
    deleted_folder_ids: List[str]
    rehomed_image_ids: List[str]


@dataclass
class MoveResult:
    moved_count: int
    folder_id: Optional[str]
    moved_ids: List[str] = field(default_factory=list)
    missing_ids: List[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    deleted_count: int
    deleted_ids: List[str] = field(default_factory=list)
    missing_ids: List[str] = field(default_factory=list)


@dataclass
class ImagePage:
    images: List[ImageRecord]
    total: int
    has_more: bool
