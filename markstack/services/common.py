import uuid


def new_document_id() -> str:
    return uuid.uuid4().hex


def clean_name(raw) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def optional_id(raw) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None
