from __future__ import annotations

from datetime import datetime, timezone

from flask import abort, current_app, jsonify, request, send_from_directory
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import MultiDict

from ..extensions import db
from ..models import Character
from ..services import GalleryError, folder_store, notify
from ..services.notifications import CHARACTERS_CHANNEL
from . import bp
from .forms import CharacterForm


def _character_dict(character: Character) -> dict:
    return {
        "id": character.id,
        "name": character.name,
        "description": character.description,
        "created_at": character.created_at.isoformat() if character.created_at else None,
        "updated_at": character.updated_at.isoformat() if character.updated_at else None,
    }


def _character_form() -> CharacterForm:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    return CharacterForm(
        formdata=MultiDict(
            {key: payload[key] for key in ("name", "description") if isinstance(payload.get(key), str)}
        )
    )


def _valid(form: CharacterForm) -> bool:
    return form.validate() and bool(form.name.data.strip())


def _get_character_or_404(character_id: str):
    character = db.session.get(Character, character_id)
    if character is None:
        return None, (jsonify({"error": "Character not found."}), 404)
    return character, None


@bp.route("/api/health")
def health():
    return jsonify({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})


@bp.route("/api/characters", methods=["GET"])
def list_characters():
    characters = Character.query.order_by(Character.name.asc()).all()
    return jsonify([_character_dict(character) for character in characters])


@bp.route("/api/characters", methods=["POST"])
def create_character():
    form = _character_form()
    if not _valid(form):
        return jsonify({"error": "Character name is required."}), 400

    character = Character(
        name=form.name.data.strip(),
        description=(form.description.data or "").strip() or None,
    )
    db.session.add(character)
    db.session.commit()
    current_app.logger.info("Created character %s (%s)", character.id, character.name)
    notify(CHARACTERS_CHANNEL, "character_created", {"id": character.id, "name": character.name})
    return jsonify(_character_dict(character)), 201


@bp.route("/api/characters/<character_id>", methods=["GET"])
def get_character(character_id: str):
    character, error = _get_character_or_404(character_id)
    if error:
        return error
    return jsonify(_character_dict(character))


@bp.route("/api/characters/<character_id>", methods=["PUT", "PATCH"])
def update_character(character_id: str):
    character, error = _get_character_or_404(character_id)
    if error:
        return error

    form = _character_form()
    if not _valid(form):
        return jsonify({"error": "Character name is required."}), 400

    character.name = form.name.data.strip()
    character.description = (form.description.data or "").strip() or None
    db.session.commit()
    notify(CHARACTERS_CHANNEL, "character_updated", {"id": character.id, "name": character.name})
    return jsonify(_character_dict(character))


@bp.route("/api/characters/<character_id>", methods=["DELETE"])
def delete_character(character_id: str):
    character, error = _get_character_or_404(character_id)
    if error:
        return error

    # Folders go through the cascade first so image files leave their directories.
    try:
        results = folder_store(character_id).delete_all()
    except GalleryError as exc:
        if exc.status_code < 500:
            return jsonify({"error": str(exc)}), exc.status_code
        current_app.logger.exception("Failed to delete folders of character %s", character_id)
        return jsonify({"error": "We couldn't delete this character right now. Please try again."}), 500

    try:
        db.session.delete(character)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to delete character %s", character_id)
        return jsonify({"error": "We couldn't delete this character right now. Please try again."}), 500

    deleted_folder_ids = [folder_id for result in results for folder_id in result.deleted_folder_ids]
    rehomed_image_ids = [image_id for result in results for image_id in result.rehomed_image_ids]
    current_app.logger.info(
        "Deleted character %s with %d folder(s); %d image(s) unfiled",
        character_id,
        len(deleted_folder_ids),
        len(rehomed_image_ids),
    )
    notify(CHARACTERS_CHANNEL, "character_deleted", {"id": character_id})
    return jsonify(
        {
            "success": True,
            "deleted_folder_ids": deleted_folder_ids,
            "rehomed_image_ids": rehomed_image_ids,
        }
    )


@bp.route("/generated/<path:filename>")
def generated_file(filename: str):
    directory = current_app.config["GENERATED_DIR"]
    if not filename.lower().endswith(".png"):
        abort(404)
    return send_from_directory(directory, filename)
