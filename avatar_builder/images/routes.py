from __future__ import annotations

import io
import time
from typing import Any, Dict, List, Optional

from flask import current_app, jsonify, request, send_file

from ..services import GalleryError, image_binding, image_library, notify
from ..services.notifications import IMAGES_CHANNEL
from . import bp

# Request keys sent by the generation client, mapped to image columns.
GENERATION_PAYLOAD_KEYS = {
    "positivePrompt": "positive_prompt",
    "negativePrompt": "negative_prompt",
    "model": "model",
    "orientation": "orientation",
    "width": "width",
    "height": "height",
    "batchSize": "batch_size",
    "samplerName": "sampler_name",
    "scheduler": "scheduler",
    "steps": "steps",
    "cfgScale": "cfg_scale",
    "seed": "seed",
    "adetailerEnabled": "adetailer_enabled",
    "adetailerModel": "adetailer_model",
    "loras": "loras",
    "info": "info_json",
}


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _folder_target(payload: Dict[str, Any]) -> Optional[str]:
    for key in ("folderId", "folder_id"):
        if key in payload:
            return payload[key] or None
    return None


def _character_scope(payload: Dict[str, Any]) -> Optional[str]:
    character_id = request.args.get("character_id")
    if not character_id:
        character_id = payload.get("character_id", payload.get("characterId"))
    return character_id or None


def _image_ids(payload: Dict[str, Any]) -> Optional[List[str]]:
    image_ids = payload.get("imageIds", payload.get("image_ids"))
    if not isinstance(image_ids, list):
        return None
    return [str(image_id) for image_id in image_ids if image_id]


def _error_response(exc: GalleryError):
    if exc.status_code >= 500:
        current_app.logger.exception("Image operation failed")
        return jsonify({"error": "We couldn't update your images right now. Please try again."}), 500
    return jsonify({"error": str(exc)}), exc.status_code


@bp.route("", methods=["GET"])
def list_images():
    limit = request.args.get("limit", type=int) or current_app.config.get("IMAGES_PAGE_SIZE", 50)
    offset = request.args.get("offset", type=int) or 0
    folder_filter = request.args.get("folder_id") or None
    try:
        page = image_library().list(folder_filter, limit=limit, offset=offset)
    except GalleryError as exc:
        return _error_response(exc)
    return jsonify(
        {
            "images": [image.to_dict() for image in page.images],
            "total": page.total,
            "has_more": page.has_more,
        }
    )


@bp.route("", methods=["POST"])
def save_image():
    payload = _payload()
    metadata = {
        column: payload[key]
        for key, column in GENERATION_PAYLOAD_KEYS.items()
        if key in payload
    }
    if "adetailer_enabled" in metadata:
        metadata["adetailer_enabled"] = bool(metadata["adetailer_enabled"])
    try:
        image = image_library().save(payload.get("imageData"), metadata, folder_id=_folder_target(payload))
    except GalleryError as exc:
        return _error_response(exc)

    notify(IMAGES_CHANNEL, "image_saved", {"image_id": image.id, "folder_id": image.folder_id})
    return jsonify(image.to_dict()), 201


@bp.route("/<image_id>", methods=["GET"])
def get_image(image_id: str):
    try:
        image = image_library().get(image_id)
    except GalleryError as exc:
        return _error_response(exc)
    return jsonify(image.to_dict())


@bp.route("/<image_id>", methods=["PUT", "PATCH"])
def move_image(image_id: str):
    payload = _payload()
    try:
        image = image_binding(_character_scope(payload)).move_one(image_id, _folder_target(payload))
    except GalleryError as exc:
        return _error_response(exc)

    notify(IMAGES_CHANNEL, "image_moved", {"image_id": image.id, "folder_id": image.folder_id})
    return jsonify(image.to_dict())


@bp.route("/<image_id>", methods=["DELETE"])
def delete_image(image_id: str):
    try:
        image_binding().delete_one(image_id)
    except GalleryError as exc:
        return _error_response(exc)

    notify(IMAGES_CHANNEL, "image_deleted", {"image_id": image_id})
    return jsonify({"success": True})


@bp.route("/bulk-move", methods=["POST"])
def bulk_move():
    payload = _payload()
    image_ids = _image_ids(payload)
    if image_ids is None:
        return jsonify({"error": "imageIds array is required"}), 400

    try:
        result = image_binding(_character_scope(payload)).move_many(image_ids, _folder_target(payload))
    except GalleryError as exc:
        return _error_response(exc)

    notify(
        IMAGES_CHANNEL,
        "images_moved",
        {"image_ids": result.moved_ids, "folder_id": result.folder_id},
    )
    return jsonify({"success": True, "count": result.moved_count, "missing": result.missing_ids})


@bp.route("/bulk-delete", methods=["POST"])
def bulk_delete():
    payload = _payload()
    image_ids = _image_ids(payload)
    if image_ids is None:
        return jsonify({"error": "imageIds array is required"}), 400

    try:
        result = image_binding().delete_many(image_ids)
    except GalleryError as exc:
        return _error_response(exc)

    notify(IMAGES_CHANNEL, "images_deleted", {"image_ids": result.deleted_ids})
    return jsonify({"success": True, "count": result.deleted_count, "missing": result.missing_ids})


@bp.route("/download-zip", methods=["POST"])
def download_zip():
    payload = _payload()
    image_ids = _image_ids(payload)
    if image_ids is None:
        return jsonify({"error": "imageIds array is required"}), 400

    try:
        archive = image_library().build_archive(image_ids)
    except GalleryError as exc:
        return _error_response(exc)

    return send_file(
        io.BytesIO(archive),
        mimetype="application/zip",
        as_attachment=True,
        download_name=f"images-{int(time.time() * 1000)}.zip",
    )
