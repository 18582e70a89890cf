from __future__ import annotations

from flask import current_app, jsonify, request

from markstack.api import api_bp
from markstack.extensions import db
from markstack.models import Bookmark, Tag
from markstack.services.common import optional_id
from markstack.services.folders import (
    check_move,
    create_folder,
    delete_folder,
    folder_path,
    folder_snapshot,
    folder_tree,
    move_folder,
    parent_options,
    update_folder,
)
from markstack.services.library import (
    LibraryError,
    delete_document,
    get_document,
    list_bookmarks,
    load_library,
    merge_tags,
    remove_tag_from_all_bookmarks,
    save_bookmark,
    save_tags_if_missing,
    update_document,
)

FOLDER_EDIT_FIELDS = {"name", "parent_id", "color", "icon", "order"}


def _json_error(message: str, status_code: int = 400):
    return jsonify({"ok": False, "error": message}), status_code


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise LibraryError("Request body must be a JSON object.")
    return payload


def _folder_or_404(account_id: str, folder_id: str) -> dict:
    for folder in folder_snapshot(account_id):
        if folder.id == folder_id:
            return folder.as_dict()
    raise LibraryError("Folder not found.", 404)


def _ensure_folder_exists(account_id: str, folder_id: str | None) -> None:
    if folder_id is not None:
        _folder_or_404(account_id, folder_id)


@api_bp.errorhandler(LibraryError)
def _library_error(error: LibraryError):
    db.session.rollback()
    return _json_error(error.message, error.status_code)


@api_bp.route("/accounts/<account_id>/library", methods=["GET"])
def library_dump(account_id: str):
    return jsonify({"ok": True, **load_library(account_id)})


@api_bp.route("/accounts/<account_id>/folders", methods=["GET"])
def folders_list(account_id: str):
    if request.args.get("view") == "tree":
        tree = folder_tree(account_id)
        return jsonify({"ok": True, "tree": [node.as_dict() for node in tree]})
    folders = folder_snapshot(account_id)
    return jsonify({"ok": True, "folders": [row.as_dict() for row in folders]})


@api_bp.route("/accounts/<account_id>/folders", methods=["POST"])
def folders_create(account_id: str):
    payload = _payload()
    folder = create_folder(
        account_id,
        payload.get("name"),
        parent_id=optional_id(payload.get("parent_id")),
        color=payload.get("color"),
        icon=payload.get("icon"),
        order=payload.get("order"),
    )
    return jsonify({"ok": True, "folder": folder.as_dict()}), 201


@api_bp.route("/accounts/<account_id>/folders/parent-options", methods=["GET"])
def folders_parent_options(account_id: str):
    folder_id = optional_id(request.args.get("folder_id"))
    options = parent_options(account_id, folder_id)
    return jsonify({"ok": True, "folders": [row.as_dict() for row in options]})


@api_bp.route("/accounts/<account_id>/folders/<folder_id>", methods=["GET"])
def folders_get(account_id: str, folder_id: str):
    return jsonify({"ok": True, "folder": _folder_or_404(account_id, folder_id)})


@api_bp.route("/accounts/<account_id>/folders/<folder_id>", methods=["PATCH"])
def folders_update(account_id: str, folder_id: str):
    payload = _payload()
    unknown = sorted(key for key in payload if key not in FOLDER_EDIT_FIELDS)
    if unknown:
        return _json_error(f"Unsupported fields: {', '.join(unknown)}")

    changes = dict(payload)
    if "parent_id" in changes:
        changes["parent_id"] = optional_id(changes["parent_id"])
    folder = update_folder(account_id, folder_id, changes)
    return jsonify({"ok": True, "folder": folder.as_dict()})


@api_bp.route("/accounts/<account_id>/folders/<folder_id>/move", methods=["POST"])
def folders_move(account_id: str, folder_id: str):
    parent_id = optional_id(_payload().get("parent_id"))
    folder = move_folder(account_id, folder_id, parent_id)
    return jsonify({"ok": True, "folder": folder.as_dict()})


@api_bp.route(
    "/accounts/<account_id>/folders/<folder_id>/validate-move", methods=["POST"]
)
def folders_validate_move(account_id: str, folder_id: str):
    parent_id = optional_id(_payload().get("parent_id"))
    verdict = check_move(account_id, folder_id, parent_id)
    return jsonify({"ok": True, "valid": verdict.valid, "error": verdict.reason})


@api_bp.route("/accounts/<account_id>/folders/<folder_id>/path", methods=["GET"])
def folders_path(account_id: str, folder_id: str):
    return jsonify({"ok": True, "path": folder_path(account_id, folder_id)})


@api_bp.route("/accounts/<account_id>/folders/<folder_id>", methods=["DELETE"])
def folders_delete(account_id: str, folder_id: str):
    summary = delete_folder(account_id, folder_id)
    return jsonify({"ok": True, **summary})


@api_bp.route("/accounts/<account_id>/bookmarks", methods=["GET"])
def bookmarks_list(account_id: str):
    rows = list_bookmarks(
        account_id,
        folder_id=optional_id(request.args.get("folder_id")),
        tag_id=optional_id(request.args.get("tag_id")),
        archived=_to_bool(request.args.get("archived"), default=False),
        query=(request.args.get("q") or "").strip() or None,
    )
    return jsonify({"ok": True, "bookmarks": [row.as_dict() for row in rows]})


@api_bp.route("/accounts/<account_id>/bookmarks/<bookmark_id>", methods=["GET"])
def bookmarks_get(account_id: str, bookmark_id: str):
    bookmark = get_document(Bookmark, account_id, bookmark_id)
    return jsonify({"ok": True, "bookmark": bookmark.as_dict()})


@api_bp.route("/accounts/<account_id>/bookmarks", methods=["POST"])
def bookmarks_create(account_id: str):
    payload = _payload()
    payload.pop("id", None)
    _ensure_folder_exists(account_id, optional_id(payload.get("folder_id")))
    bookmark = save_bookmark(account_id, payload)
    db.session.commit()
    return jsonify({"ok": True, "bookmark": bookmark.as_dict()}), 201


@api_bp.route("/accounts/<account_id>/bookmarks/<bookmark_id>", methods=["PUT"])
def bookmarks_upsert(account_id: str, bookmark_id: str):
    payload = _payload()
    payload["id"] = bookmark_id
    _ensure_folder_exists(account_id, optional_id(payload.get("folder_id")))
    bookmark = save_bookmark(account_id, payload)
    db.session.commit()
    return jsonify({"ok": True, "bookmark": bookmark.as_dict()})


@api_bp.route("/accounts/<account_id>/bookmarks/<bookmark_id>", methods=["PATCH"])
def bookmarks_update(account_id: str, bookmark_id: str):
    payload = _payload()
    if "folder_id" in payload:
        _ensure_folder_exists(account_id, optional_id(payload["folder_id"]))
    bookmark = update_document(Bookmark, account_id, bookmark_id, payload)
    db.session.commit()
    return jsonify({"ok": True, "bookmark": bookmark.as_dict()})


@api_bp.route("/accounts/<account_id>/bookmarks/<bookmark_id>", methods=["DELETE"])
def bookmarks_delete(account_id: str, bookmark_id: str):
    delete_document(Bookmark, account_id, bookmark_id)
    db.session.commit()
    return jsonify({"ok": True, "deleted": bookmark_id})


@api_bp.route("/accounts/<account_id>/tags", methods=["POST"])
def tags_create(account_id: str):
    payload = _payload()
    items = payload.get("tags")
    if items is None:
        items = [payload]
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        return _json_error("Tags must be a list of objects.")
    tags = save_tags_if_missing(account_id, items)
    db.session.commit()
    return jsonify({"ok": True, "tags": [tag.as_dict() for tag in tags]}), 201


@api_bp.route("/accounts/<account_id>/tags/<tag_id>", methods=["PATCH"])
def tags_update(account_id: str, tag_id: str):
    tag = update_document(Tag, account_id, tag_id, _payload())
    db.session.commit()
    return jsonify({"ok": True, "tag": tag.as_dict()})


@api_bp.route("/accounts/<account_id>/tags/<tag_id>/merge", methods=["POST"])
def tags_merge(account_id: str, tag_id: str):
    target_id = optional_id(_payload().get("target_id"))
    if target_id is None:
        return _json_error("Target tag is required.")
    updated = merge_tags(account_id, tag_id, target_id)
    db.session.commit()
    current_app.logger.info(
        "Merged tag %s into %s for account %s (%d bookmark(s))",
        tag_id,
        target_id,
        account_id,
        updated,
    )
    return jsonify({"ok": True, "target_id": target_id, "updated_bookmarks": updated})


@api_bp.route("/accounts/<account_id>/tags/<tag_id>", methods=["DELETE"])
def tags_delete(account_id: str, tag_id: str):
    tag = get_document(Tag, account_id, tag_id)
    updated = remove_tag_from_all_bookmarks(account_id, tag_id)
    db.session.delete(tag)
    db.session.commit()
    return jsonify({"ok": True, "deleted": tag_id, "updated_bookmarks": updated})
