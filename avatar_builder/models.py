from __future__ import annotations

import uuid
from datetime import datetime

from .extensions import db


def _new_id() -> str:
    return str(uuid.uuid4())


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    folders = db.relationship("Folder", backref="character", lazy=True, order_by="Folder.name")

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<Character {self.name}>"


class Folder(db.Model):
    __tablename__ = "folders"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=True)
    parent_id = db.Column(db.String(36), db.ForeignKey("folders.id"), nullable=True, index=True)
    character_id = db.Column(
        db.String(36), db.ForeignKey("characters.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Folder {self.name} (parent {self.parent_id})>"


class Image(db.Model):
    """A persisted generation: the PNG on disk plus the parameters used."""

    __tablename__ = "images"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    filename = db.Column(db.String(255), nullable=False)
    folder_id = db.Column(
        db.String(36), db.ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    file_migrated = db.Column(db.Boolean, nullable=False, default=False)

    positive_prompt = db.Column(db.Text, nullable=True)
    negative_prompt = db.Column(db.Text, nullable=True)
    model = db.Column(db.String(255), nullable=True)
    orientation = db.Column(db.String(50), nullable=True)
    width = db.Column(db.Integer, nullable=True)
    height = db.Column(db.Integer, nullable=True)
    batch_size = db.Column(db.Integer, nullable=True)
    sampler_name = db.Column(db.String(120), nullable=True)
    scheduler = db.Column(db.String(120), nullable=True)
    steps = db.Column(db.Integer, nullable=True)
    cfg_scale = db.Column(db.Float, nullable=True)
    seed = db.Column(db.BigInteger, nullable=True)
    adetailer_enabled = db.Column(db.Boolean, nullable=False, default=False)
    adetailer_model = db.Column(db.String(255), nullable=True)
    loras = db.Column(db.JSON, nullable=True)
    info_json = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    folder = db.relationship("Folder", lazy=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Image {self.filename} in {self.folder_id or 'unfiled'}>"
