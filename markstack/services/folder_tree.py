from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace

logger = logging.getLogger(__name__)

REASON_OWN_PARENT = "A folder cannot be its own parent."
REASON_OWN_DESCENDANT = "Cannot move a folder into its own descendant."


@dataclass(frozen=True)
class FolderRecord:
    id: str
    name: str
    parent_id: str | None = None
    level: int = 0
    order: int | None = None
    color: str | None = None
    icon: str | None = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "parent_id": self.parent_id,
            "level": self.level,
            "order": self.order,
            "color": self.color,
            "icon": self.icon,
        }


@dataclass(frozen=True)
class FolderNode(FolderRecord):
    children: list[FolderNode] = field(default_factory=list)

    def to_record(self) -> FolderRecord:
        return FolderRecord(
            **{item.name: getattr(self, item.name) for item in fields(FolderRecord)}
        )

    def as_dict(self) -> dict:
        payload = super().as_dict()
        payload["children"] = [child.as_dict() for child in self.children]
        return payload


@dataclass(frozen=True)
class MoveVerdict:
    valid: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True)
class DeletionPlan:
    """What the caller must rewrite before dropping a folder.

    Direct children and bookmarks filed directly in the folder move up to
    ``new_parent_id``; nothing below the folder is deleted.
    """

    folder_id: str
    new_parent_id: str | None
    reparented_child_ids: frozenset[str] = frozenset()
    reparented_bookmark_folder_ids: frozenset[str] = frozenset()


def _index(snapshot) -> dict[str, FolderRecord]:
    return {folder.id: folder for folder in snapshot}


def _children_map(snapshot) -> dict[str | None, list[FolderRecord]]:
    children_by_parent: dict[str | None, list[FolderRecord]] = {}
    for folder in snapshot:
        children_by_parent.setdefault(folder.parent_id, []).append(folder)
    return children_by_parent


def _level_of(folder: FolderRecord, by_id: dict[str, FolderRecord]) -> int:
    level = 0
    visited = {folder.id}
    cursor = folder
    while cursor.parent_id is not None:
        parent = by_id.get(cursor.parent_id)
        if parent is None:
            logger.debug(
                "Folder %s points at missing parent %s", cursor.id, cursor.parent_id
            )
            break
        level += 1
        if parent.id in visited:
            logger.debug("Cycle through folder %s while leveling %s", parent.id, folder.id)
            break
        visited.add(parent.id)
        cursor = parent
    return level


def compute_levels(snapshot) -> list[FolderRecord]:
    by_id = _index(snapshot)
    return [replace(folder, level=_level_of(folder, by_id)) for folder in snapshot]


def _sorted_siblings(siblings: list[FolderRecord]) -> list[FolderRecord]:
    if siblings and all(folder.order is not None for folder in siblings):
        return sorted(siblings, key=lambda folder: folder.order)
    return sorted(siblings, key=lambda folder: folder.name)


def _node(folder: FolderRecord) -> FolderNode:
    return FolderNode(
        **{item.name: getattr(folder, item.name) for item in fields(FolderRecord)}
    )


def build_tree(snapshot) -> list[FolderNode]:
    by_id = _index(snapshot)
    children_by_parent: dict[str | None, list[FolderRecord]] = {}
    for folder in by_id.values():
        parent_id = folder.parent_id if folder.parent_id in by_id else None
        children_by_parent.setdefault(parent_id, []).append(folder)

    roots: list[FolderNode] = []
    visited: set[str] = set()

    def grow(root: FolderRecord) -> None:
        visited.add(root.id)
        root_node = _node(root)
        roots.append(root_node)
        stack = [root_node]
        while stack:
            node = stack.pop()
            for child in _sorted_siblings(children_by_parent.get(node.id, [])):
                if child.id in visited:
                    continue
                visited.add(child.id)
                child_node = _node(child)
                node.children.append(child_node)
                stack.append(child_node)

    for folder in _sorted_siblings(children_by_parent.get(None, [])):
        grow(folder)

    if len(visited) != len(by_id):
        leftovers = sorted(
            (folder for folder in by_id.values() if folder.id not in visited),
            key=lambda folder: folder.name,
        )
        for folder in leftovers:
            if folder.id not in visited:
                logger.debug("Promoting unreachable folder %s to a root", folder.id)
                grow(folder)

    return roots


def flatten_tree(forest) -> list[FolderRecord]:
    result: list[FolderRecord] = []
    seen: set[str] = set()
    stack = list(reversed(forest))
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen.add(node.id)
        result.append(node.to_record())
        stack.extend(reversed(node.children))
    return result


def get_all_child_folder_ids(folder_id: str, snapshot) -> set[str]:
    children_by_parent = _children_map(snapshot)
    found: set[str] = set()
    stack = [folder_id]
    while stack:
        current_id = stack.pop()
        for child in children_by_parent.get(current_id, []):
            if child.id == folder_id or child.id in found:
                continue
            found.add(child.id)
            stack.append(child.id)
    return found


def validate_move(folder_id: str, new_parent_id: str | None, snapshot) -> MoveVerdict:
    if new_parent_id == folder_id:
        return MoveVerdict(False, REASON_OWN_PARENT)
    if new_parent_id is None:
        return MoveVerdict(True)
    if new_parent_id in get_all_child_folder_ids(folder_id, snapshot):
        return MoveVerdict(False, REASON_OWN_DESCENDANT)
    return MoveVerdict(True)


def is_name_unique(
    name: str,
    parent_id: str | None,
    snapshot,
    exclude_id: str | None = None,
) -> bool:
    wanted = name.lower()
    return not any(
        folder.parent_id == parent_id
        and folder.name.lower() == wanted
        and folder.id != exclude_id
        for folder in snapshot
    )


def get_folder_path(folder_id: str, snapshot) -> list[str]:
    by_id = _index(snapshot)
    path: list[str] = []
    seen: set[str] = set()
    cursor_id = folder_id
    while cursor_id is not None and cursor_id not in seen:
        seen.add(cursor_id)
        folder = by_id.get(cursor_id)
        if folder is None:
            break
        path.append(folder.name)
        cursor_id = folder.parent_id
    path.reverse()
    return path


def plan_deletion(folder_id: str, snapshot) -> DeletionPlan:
    by_id = _index(snapshot)
    folder = by_id.get(folder_id)
    if folder is None:
        return DeletionPlan(folder_id=folder_id, new_parent_id=None)

    new_parent_id = folder.parent_id
    if new_parent_id is not None and (
        new_parent_id not in by_id
        or new_parent_id == folder_id
        or new_parent_id in get_all_child_folder_ids(folder_id, snapshot)
    ):
        # a dangling or cyclic parent cannot adopt anything
        new_parent_id = None

    child_ids = frozenset(
        row.id for row in snapshot if row.parent_id == folder_id and row.id != folder_id
    )
    return DeletionPlan(
        folder_id=folder_id,
        new_parent_id=new_parent_id,
        reparented_child_ids=child_ids,
        reparented_bookmark_folder_ids=frozenset({folder_id}),
    )


def apply_deletion(plan: DeletionPlan, snapshot) -> list[FolderRecord]:
    remaining = [
        replace(folder, parent_id=plan.new_parent_id)
        if folder.id in plan.reparented_child_ids
        else folder
        for folder in snapshot
        if folder.id != plan.folder_id
    ]
    return compute_levels(remaining)


def available_parents(folder_id: str | None, snapshot) -> list[FolderRecord]:
    if folder_id is None:
        return list(snapshot)
    excluded = get_all_child_folder_ids(folder_id, snapshot)
    excluded.add(folder_id)
    return [folder for folder in snapshot if folder.id not in excluded]
