from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app, jsonify, request
from werkzeug.datastructures import MultiDict

from ..services import UNSET, GalleryError, folder_store, notify
from ..services.notifications import FOLDERS_CHANNEL
from . import bp
from .forms import FolderForm, FolderUpdateForm


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _pick(payload: Dict[str, Any], *keys: str, default: Any = UNSET) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _character_scope(payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
    character_id = request.args.get("character_id")
    if not character_id and payload:
        character_id = _pick(payload, "character_id", "characterId", default=None)
    return character_id or None


def _form_data(payload: Dict[str, Any], *fields: str) -> MultiDict:
    return MultiDict({field: payload[field] for field in fields if isinstance(payload.get(field), str)})


def _form_error(form) -> str:
    for field_name, errors in form.errors.items():
        for error in errors:
            if field_name == "name" and "required" in error.lower():
                return "Folder name is required."
            return f"{getattr(form, field_name).label.text}: {error}"
    return "Invalid folder data."


def _error_response(exc: GalleryError):
    if exc.status_code >= 500:
        current_app.logger.exception("Folder operation failed")
        return jsonify({"error": "We couldn't update your folders right now. Please try again."}), 500
    return jsonify({"error": str(exc)}), exc.status_code


@bp.route("", methods=["GET"])
def list_folders():
    try:
        folders = folder_store(_character_scope()).list()
    except GalleryError as exc:
        return _error_response(exc)
    return jsonify([folder.to_dict() for folder in folders])


@bp.route("/tree", methods=["GET"])
def folder_tree():
    try:
        tree = folder_store(_character_scope()).nested()
    except GalleryError as exc:
        return _error_response(exc)
    return jsonify(tree)


@bp.route("", methods=["POST"])
def create_folder():
    payload = _payload()
    form = FolderForm(formdata=_form_data(payload, "name", "description"))
    if not form.validate():
        return jsonify({"error": _form_error(form)}), 400

    store = folder_store(_character_scope(payload))
    try:
        folder = store.create(
            payload.get("name"),
            description=payload.get("description"),
            parent_id=_pick(payload, "parent_id", "parentId", default=None),
        )
    except GalleryError as exc:
        return _error_response(exc)

    notify(FOLDERS_CHANNEL, "folder_created", {"folder": folder.to_dict()})
    return jsonify(folder.to_dict()), 201


@bp.route("/<folder_id>", methods=["GET"])
def get_folder(folder_id: str):
    try:
        folder = folder_store(_character_scope()).get(folder_id)
    except GalleryError as exc:
        return _error_response(exc)
    return jsonify(folder.to_dict())


@bp.route("/<folder_id>", methods=["PUT", "PATCH"])
def update_folder(folder_id: str):
    payload = _payload()
    form = FolderUpdateForm(formdata=_form_data(payload, "name", "description"))
    if not form.validate():
        return jsonify({"error": _form_error(form)}), 400

    store = folder_store(_character_scope(payload))
    try:
        folder = store.update(
            folder_id,
            name=_pick(payload, "name"),
            description=_pick(payload, "description"),
            parent_id=_pick(payload, "parent_id", "parentId"),
        )
    except GalleryError as exc:
        return _error_response(exc)

    notify(FOLDERS_CHANNEL, "folder_updated", {"folder": folder.to_dict()})
    return jsonify(folder.to_dict())


@bp.route("/<folder_id>", methods=["DELETE"])
def delete_folder(folder_id: str):
    try:
        result = folder_store(_character_scope()).delete(folder_id)
    except GalleryError as exc:
        return _error_response(exc)

    response_payload = {
        "success": True,
        "deleted_folder_ids": result.deleted_folder_ids,
        "rehomed_image_ids": result.rehomed_image_ids,
        "new_folder_id": result.new_folder_id,
    }
    notify(FOLDERS_CHANNEL, "folder_deleted", {"folder_id": folder_id, **response_payload})
    return jsonify(response_payload)
