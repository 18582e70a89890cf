from datetime import datetime, timezone

from markstack.extensions import db
from markstack.services.folder_tree import FolderRecord

BOOKMARK_TYPES = ("LINK", "IMAGE", "NOTE")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Folder(db.Model):
    __tablename__ = "folders"

    account_id = db.Column(db.String(128), primary_key=True)
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # weak reference, the store does not enforce it
    parent_id = db.Column(db.String(64), nullable=True, index=True)
    level = db.Column(db.Integer, nullable=False, default=0)
    order = db.Column("sort_order", db.Integer, nullable=True)
    color = db.Column(db.String(32), nullable=True)
    icon = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_record(self) -> FolderRecord:
        return FolderRecord(
            id=self.id,
            name=self.name,
            parent_id=self.parent_id,
            level=self.level or 0,
            order=self.order,
            color=self.color,
            icon=self.icon,
        )

    def apply_record(self, record: FolderRecord) -> None:
        self.name = record.name
        self.parent_id = record.parent_id
        self.level = record.level
        self.order = record.order
        self.color = record.color
        self.icon = record.icon

    def as_dict(self):
        payload = self.to_record().as_dict()
        payload["created_at"] = _isoformat(self.created_at)
        payload["updated_at"] = _isoformat(self.updated_at)
        return payload


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    account_id = db.Column(db.String(128), primary_key=True)
    id = db.Column(db.String(64), primary_key=True)
    folder_id = db.Column(db.String(64), nullable=True, index=True)
    type = db.Column(db.String(16), nullable=False, default="LINK")
    title = db.Column(db.String(512), nullable=False, default="")
    url = db.Column(db.Text, nullable=False, default="")
    image_url = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=False, default="")
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (db.Index("ix_bookmark_account_folder", "account_id", "folder_id"),)

    def as_dict(self):
        return {
            "id": self.id,
            "folder_id": self.folder_id,
            "type": self.type,
            "title": self.title,
            "url": self.url,
            "image_url": self.image_url,
            "description": self.description,
            "tags": list(self.tags or []),
            "is_archived": bool(self.is_archived),
            "archived_at": _isoformat(self.archived_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class Tag(db.Model):
    __tablename__ = "tags"

    account_id = db.Column(db.String(128), primary_key=True)
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    color = db.Column(db.String(32), nullable=False, default="#64748b")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {"id": self.id, "name": self.name, "color": self.color}
