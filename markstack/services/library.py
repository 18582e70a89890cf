from __future__ import annotations

from markstack.extensions import db
from markstack.models import BOOKMARK_TYPES, Bookmark, Folder, Tag, utcnow
from markstack.services.common import new_document_id, optional_id
from markstack.services.folder_tree import FolderRecord

BOOKMARK_FIELDS = (
    "folder_id",
    "type",
    "title",
    "url",
    "image_url",
    "description",
    "tags",
    "is_archived",
)
TAG_FIELDS = ("name", "color")

_EDITABLE_FIELDS = {Bookmark: BOOKMARK_FIELDS, Tag: TAG_FIELDS}


class LibraryError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def load_folders(account_id: str) -> list[FolderRecord]:
    rows = (
        Folder.query.filter_by(account_id=account_id)
        .order_by(Folder.created_at, Folder.id)
        .all()
    )
    return [row.to_record() for row in rows]


def load_library(account_id: str) -> dict:
    folders = Folder.query.filter_by(account_id=account_id).all()
    bookmarks = (
        Bookmark.query.filter_by(account_id=account_id)
        .order_by(Bookmark.created_at.desc())
        .all()
    )
    tags = Tag.query.filter_by(account_id=account_id).order_by(Tag.name).all()
    return {
        "folders": [row.as_dict() for row in folders],
        "bookmarks": [row.as_dict() for row in bookmarks],
        "tags": [row.as_dict() for row in tags],
    }


def get_document(model, account_id: str, doc_id: str):
    row = model.query.filter_by(id=doc_id, account_id=account_id).first()
    if row is None:
        label = model.__tablename__.rstrip("s").capitalize()
        raise LibraryError(f"{label} not found.", 404)
    return row


def save_folder(account_id: str, record: FolderRecord) -> Folder:
    row = Folder.query.filter_by(id=record.id, account_id=account_id).first()
    if row is None:
        row = Folder(id=record.id, account_id=account_id)
        db.session.add(row)
    row.apply_record(record)
    return row


def delete_folder_document(account_id: str, folder_id: str) -> None:
    db.session.delete(get_document(Folder, account_id, folder_id))


def _clean_bookmark_value(field_name: str, value):
    if field_name == "folder_id":
        return optional_id(value)
    if field_name == "type":
        kind = str(value or "LINK").strip().upper()
        if kind not in BOOKMARK_TYPES:
            raise LibraryError("Bookmark type is invalid.")
        return kind
    if field_name == "tags":
        if not isinstance(value, list):
            raise LibraryError("Bookmark tags must be a list of tag ids.")
        return list(dict.fromkeys(str(item) for item in value if item))
    if field_name == "is_archived":
        return bool(value)
    if value is not None and not isinstance(value, str):
        raise LibraryError(f"Bookmark {field_name} must be a string.")
    if field_name == "image_url":
        return (value or "").strip() or None
    return (value or "").strip()


def _clean_tag_value(field_name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise LibraryError(f"Tag {field_name} is required.")
    return value.strip()


def _apply_bookmark_fields(bookmark: Bookmark, payload: dict) -> None:
    for field_name in BOOKMARK_FIELDS:
        if field_name not in payload:
            continue
        value = _clean_bookmark_value(field_name, payload[field_name])
        if field_name == "is_archived" and value != bool(bookmark.is_archived):
            bookmark.archived_at = utcnow() if value else None
        setattr(bookmark, field_name, value)


def save_bookmark(account_id: str, payload: dict) -> Bookmark:
    bookmark_id = optional_id(payload.get("id")) or new_document_id()
    bookmark = Bookmark.query.filter_by(id=bookmark_id, account_id=account_id).first()
    if bookmark is None:
        bookmark = Bookmark(
            id=bookmark_id,
            account_id=account_id,
            type="LINK",
            title="",
            url="",
            description="",
            tags=[],
            is_archived=False,
        )
        db.session.add(bookmark)
    _apply_bookmark_fields(bookmark, payload)
    return bookmark


def update_document(model, account_id: str, doc_id: str, patch: dict):
    row = get_document(model, account_id, doc_id)
    allowed = _EDITABLE_FIELDS.get(model, ())
    unknown = sorted(key for key in patch if key not in allowed)
    if unknown:
        raise LibraryError(f"Unsupported fields: {', '.join(unknown)}")
    if model is Bookmark:
        _apply_bookmark_fields(row, patch)
        return row
    for field_name, value in patch.items():
        setattr(row, field_name, _clean_tag_value(field_name, value))
    return row


def delete_document(model, account_id: str, doc_id: str) -> None:
    db.session.delete(get_document(model, account_id, doc_id))


def reparent_bookmarks(
    account_id: str,
    folder_ids,
    new_folder_id: str | None,
) -> int:
    folder_ids = list(folder_ids)
    if not folder_ids:
        return 0
    rows = (
        Bookmark.query.filter_by(account_id=account_id)
        .filter(Bookmark.folder_id.in_(folder_ids))
        .all()
    )
    for bookmark in rows:
        bookmark.folder_id = new_folder_id
    return len(rows)


def save_tags_if_missing(account_id: str, tags: list[dict]) -> list[Tag]:
    saved: list[Tag] = []
    for item in tags:
        name = _clean_tag_value("name", item.get("name"))
        color = item.get("color")
        if color is not None:
            color = _clean_tag_value("color", color)
        tag_id = optional_id(item.get("id")) or new_document_id()
        tag = Tag.query.filter_by(id=tag_id, account_id=account_id).first()
        if tag is None:
            tag = Tag(id=tag_id, account_id=account_id, name=name)
            if color:
                tag.color = color
            db.session.add(tag)
        saved.append(tag)
    return saved


def list_bookmarks(
    account_id: str,
    folder_id: str | None = None,
    tag_id: str | None = None,
    archived: bool = False,
    query: str | None = None,
) -> list[Bookmark]:
    """Bookmarks for one library view.

    The archive view lists archived bookmarks from every folder; otherwise
    only active bookmarks are listed, optionally narrowed to ``folder_id``.
    ``query`` is a case-insensitive substring match on title, description
    and url.
    """
    rows = Bookmark.query.filter_by(account_id=account_id, is_archived=archived)
    if folder_id and not archived:
        rows = rows.filter_by(folder_id=folder_id)
    rows = rows.order_by(Bookmark.created_at.desc(), Bookmark.id).all()

    if tag_id:
        rows = [row for row in rows if tag_id in (row.tags or [])]
    needle = (query or "").lower()
    if needle:
        rows = [
            row
            for row in rows
            if needle in (row.title or "").lower()
            or needle in (row.description or "").lower()
            or needle in (row.url or "").lower()
        ]
    return rows


def _bookmarks_with_tag(account_id: str, tag_id: str) -> list[Bookmark]:
    rows = Bookmark.query.filter_by(account_id=account_id).all()
    return [row for row in rows if tag_id in (row.tags or [])]


def merge_tags(account_id: str, source_id: str, target_id: str) -> int:
    if source_id == target_id:
        raise LibraryError("A tag cannot be merged into itself.")
    source = get_document(Tag, account_id, source_id)
    get_document(Tag, account_id, target_id)

    updated = 0
    for bookmark in _bookmarks_with_tag(account_id, source_id):
        current = list(bookmark.tags or [])
        if target_id in current:
            bookmark.tags = [tag_id for tag_id in current if tag_id != source_id]
        else:
            bookmark.tags = [
                target_id if tag_id == source_id else tag_id for tag_id in current
            ]
        updated += 1

    db.session.delete(source)
    return updated


def remove_tag_from_all_bookmarks(account_id: str, tag_id: str) -> int:
    updated = 0
    for bookmark in _bookmarks_with_tag(account_id, tag_id):
        bookmark.tags = [value for value in bookmark.tags if value != tag_id]
        updated += 1
    return updated
