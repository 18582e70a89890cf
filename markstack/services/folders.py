"""Structural folder edits for one account.

Every edit reads the account's full folder snapshot, validates it through
the folder tree engine and writes back the folders whose stored fields
changed. Edits for the same account are serialized with a per-account lock
so two edits never validate against the same stale snapshot.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from markstack.extensions import db
from markstack.services.common import clean_name, new_document_id
from markstack.services.folder_tree import (
    FolderRecord,
    MoveVerdict,
    apply_deletion,
    available_parents,
    build_tree,
    compute_levels,
    flatten_tree,
    get_folder_path,
    is_name_unique,
    plan_deletion,
    validate_move,
)
from markstack.services.library import (
    LibraryError,
    delete_folder_document,
    load_folders,
    reparent_bookmarks,
    save_folder,
)

_LOCKS_GUARD = threading.Lock()
# account id -> [lock, number of edits holding or waiting on it]
_ACCOUNT_LOCKS: dict[str, list] = {}


class FolderEditError(LibraryError):
    pass


@contextmanager
def _account_lock(account_id: str):
    with _LOCKS_GUARD:
        entry = _ACCOUNT_LOCKS.setdefault(account_id, [threading.Lock(), 0])
        entry[1] += 1
    entry[0].acquire()
    try:
        yield
    finally:
        entry[0].release()
        with _LOCKS_GUARD:
            entry[1] -= 1
            if entry[1] == 0:
                del _ACCOUNT_LOCKS[account_id]


def _reject(account_id: str, message: str, status_code: int = 400):
    current_app.logger.warning(
        "Rejected folder edit for account %s: %s", account_id, message
    )
    raise FolderEditError(message, status_code)


def _find(snapshot: list[FolderRecord], folder_id: str | None) -> FolderRecord | None:
    for folder in snapshot:
        if folder.id == folder_id:
            return folder
    return None


def _require_folder(account_id: str, snapshot, folder_id: str) -> FolderRecord:
    folder = _find(snapshot, folder_id)
    if folder is None:
        _reject(account_id, "Folder not found.", 404)
    return folder


def _validated_name(account_id: str, raw) -> str:
    name = clean_name(raw)
    if not name:
        _reject(account_id, "Folder name is required.")
    if len(name) > current_app.config["FOLDER_NAME_MAX_LENGTH"]:
        _reject(account_id, "Folder name is too long.")
    return name


def _validated_order(account_id: str, raw) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        _reject(account_id, "Folder order must be an integer.")
    if isinstance(raw, float) and not raw.is_integer():
        _reject(account_id, "Folder order must be an integer.")
    try:
        return int(raw)
    except (TypeError, ValueError):
        _reject(account_id, "Folder order must be an integer.")


def _validated_label(account_id: str, field_name: str, raw) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        _reject(account_id, f"Folder {field_name} must be a string.")
    return raw.strip() or None


def _persist(account_id: str, before: list[FolderRecord], after: list[FolderRecord]) -> int:
    previous = {folder.id: folder for folder in before}
    written = 0
    for folder in after:
        if previous.get(folder.id) != folder:
            save_folder(account_id, folder)
            written += 1
    return written


def _commit() -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def create_folder(
    account_id: str,
    name,
    parent_id: str | None = None,
    color: str | None = None,
    icon: str | None = None,
    order=None,
) -> FolderRecord:
    name = _validated_name(account_id, name)
    order = _validated_order(account_id, order)
    color = _validated_label(account_id, "color", color)
    icon = _validated_label(account_id, "icon", icon)
    with _account_lock(account_id):
        snapshot = load_folders(account_id)
        if parent_id is not None and _find(snapshot, parent_id) is None:
            _reject(account_id, "Parent folder was not found.", 404)
        if not is_name_unique(name, parent_id, snapshot):
            _reject(
                account_id,
                "A folder with this name already exists in the selected parent.",
                409,
            )

        folder = FolderRecord(
            id=new_document_id(),
            name=name,
            parent_id=parent_id,
            order=order,
            color=color,
            icon=icon,
        )
        updated = compute_levels(snapshot + [folder])
        _persist(account_id, snapshot, updated)
        _commit()

    created = _find(updated, folder.id)
    current_app.logger.info(
        "Created folder %s (%s) for account %s at level %s",
        created.id,
        created.name,
        account_id,
        created.level,
    )
    return created


def update_folder(account_id: str, folder_id: str, changes: dict) -> FolderRecord:
    with _account_lock(account_id):
        snapshot = load_folders(account_id)
        folder = _require_folder(account_id, snapshot, folder_id)

        name = folder.name
        if "name" in changes:
            name = _validated_name(account_id, changes["name"])

        parent_id = changes.get("parent_id", folder.parent_id)
        if parent_id != folder.parent_id:
            if parent_id is not None and _find(snapshot, parent_id) is None:
                _reject(account_id, "Target folder was not found.", 404)
            verdict = validate_move(folder.id, parent_id, snapshot)
            if not verdict:
                _reject(account_id, verdict.reason)

        if (name != folder.name or parent_id != folder.parent_id) and not is_name_unique(
            name, parent_id, snapshot, exclude_id=folder.id
        ):
            _reject(
                account_id,
                "A folder with this name already exists in the selected parent.",
                409,
            )

        edited = replace(folder, name=name, parent_id=parent_id)
        if "order" in changes:
            edited = replace(edited, order=_validated_order(account_id, changes["order"]))
        if "color" in changes:
            edited = replace(
                edited, color=_validated_label(account_id, "color", changes["color"])
            )
        if "icon" in changes:
            edited = replace(
                edited, icon=_validated_label(account_id, "icon", changes["icon"])
            )

        updated = compute_levels(
            [edited if row.id == folder.id else row for row in snapshot]
        )
        written = _persist(account_id, snapshot, updated)
        if written:
            _commit()

    result = _find(updated, folder.id)
    if written:
        current_app.logger.info(
            "Updated folder %s for account %s (%d folder(s) rewritten)",
            folder.id,
            account_id,
            written,
        )
    return result


def move_folder(account_id: str, folder_id: str, parent_id: str | None) -> FolderRecord:
    return update_folder(account_id, folder_id, {"parent_id": parent_id})


def check_move(account_id: str, folder_id: str, parent_id: str | None) -> MoveVerdict:
    snapshot = load_folders(account_id)
    _require_folder(account_id, snapshot, folder_id)
    if parent_id is not None and _find(snapshot, parent_id) is None:
        return MoveVerdict(False, "Target folder was not found.")
    return validate_move(folder_id, parent_id, snapshot)


def delete_folder(account_id: str, folder_id: str) -> dict:
    with _account_lock(account_id):
        snapshot = load_folders(account_id)
        _require_folder(account_id, snapshot, folder_id)

        plan = plan_deletion(folder_id, snapshot)
        remaining = apply_deletion(plan, snapshot)
        moved_bookmarks = reparent_bookmarks(
            account_id, plan.reparented_bookmark_folder_ids, plan.new_parent_id
        )
        _persist(account_id, snapshot, remaining)
        delete_folder_document(account_id, folder_id)
        _commit()

    current_app.logger.info(
        "Deleted folder %s for account %s; %d folder(s) and %d bookmark(s) moved to %s",
        folder_id,
        account_id,
        len(plan.reparented_child_ids),
        moved_bookmarks,
        plan.new_parent_id or "root",
    )
    return {
        "folder_id": folder_id,
        "new_parent_id": plan.new_parent_id,
        "reparented_folder_ids": sorted(plan.reparented_child_ids),
        "reparented_bookmarks": moved_bookmarks,
    }


def folder_snapshot(account_id: str) -> list[FolderRecord]:
    return compute_levels(load_folders(account_id))


def folder_tree(account_id: str):
    return build_tree(folder_snapshot(account_id))


def folder_path(account_id: str, folder_id: str) -> list[str]:
    snapshot = load_folders(account_id)
    _require_folder(account_id, snapshot, folder_id)
    return get_folder_path(folder_id, snapshot)


def parent_options(account_id: str, folder_id: str | None = None) -> list[FolderRecord]:
    """Folders offered as new parents; excludes ``folder_id`` and its subtree."""
    snapshot = folder_snapshot(account_id)
    if folder_id is not None:
        _require_folder(account_id, snapshot, folder_id)
    return flatten_tree(build_tree(available_parents(folder_id, snapshot)))
