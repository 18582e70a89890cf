import pytest

from markstack.extensions import db
from markstack.models import Bookmark, Tag
from markstack.services.library import (
    LibraryError,
    merge_tags,
    reparent_bookmarks,
    save_bookmark,
    save_tags_if_missing,
)

ACCOUNT = "acct-lib"
BASE = f"/api/v1/accounts/{ACCOUNT}"


def _seed_tags(client, *names):
    response = client.post(
        f"{BASE}/tags",
        json={"tags": [{"id": name.lower(), "name": name} for name in names]},
    )
    assert response.status_code == 201
    return [row["id"] for row in response.get_json()["tags"]]


def _bookmark(client, title: str, tags=None, **extra):
    response = client.post(
        f"{BASE}/bookmarks",
        json={"title": title, "url": f"https://{title.lower()}.example", "tags": tags or [], **extra},
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["bookmark"]


def test_bookmark_upsert_and_partial_update(client):
    created = _bookmark(client, "Docs", type="note")
    assert created["type"] == "NOTE"
    assert created["folder_id"] is None

    response = client.put(
        f"{BASE}/bookmarks/{created['id']}",
        json={"title": "Docs v2", "description": "  reference  "},
    )
    assert response.status_code == 200
    assert response.get_json()["bookmark"]["title"] == "Docs v2"
    assert response.get_json()["bookmark"]["description"] == "reference"

    response = client.patch(f"{BASE}/bookmarks/{created['id']}", json={"is_archived": True})
    payload = response.get_json()["bookmark"]
    assert payload["is_archived"] is True
    assert payload["archived_at"] is not None
    assert payload["url"] == "https://docs.example"

    response = client.patch(f"{BASE}/bookmarks/{created['id']}", json={"is_archived": False})
    assert response.get_json()["bookmark"]["archived_at"] is None

    client_id = client.put(f"{BASE}/bookmarks/client-chosen", json={"title": "Mine"})
    assert client_id.get_json()["bookmark"]["id"] == "client-chosen"


def test_bookmark_validation_errors(client):
    created = _bookmark(client, "Docs")

    assert (
        client.post(f"{BASE}/bookmarks", json={"title": "X", "folder_id": "nope"}).status_code
        == 404
    )
    assert (
        client.patch(f"{BASE}/bookmarks/{created['id']}", json={"type": "VIDEO"}).status_code
        == 400
    )
    assert (
        client.patch(f"{BASE}/bookmarks/{created['id']}", json={"tags": "a,b"}).status_code
        == 400
    )
    assert (
        client.patch(f"{BASE}/bookmarks/{created['id']}", json={"user": "x"}).status_code
        == 400
    )
    assert client.patch(f"{BASE}/bookmarks/nope", json={"title": "x"}).status_code == 404

    response = client.delete(f"{BASE}/bookmarks/{created['id']}")
    assert response.get_json() == {"ok": True, "deleted": created["id"]}
    assert client.delete(f"{BASE}/bookmarks/{created['id']}").status_code == 404


def test_merge_tags_rewrites_bookmarks_without_duplicates(client, app):
    source, target, other = _seed_tags(client, "Py", "Python", "Misc")
    only_source = _bookmark(client, "One", tags=[source, other])
    both = _bookmark(client, "Two", tags=[target, source])
    untouched = _bookmark(client, "Three", tags=[other])

    response = client.post(f"{BASE}/tags/{source}/merge", json={"target_id": target})
    assert response.status_code == 200
    assert response.get_json()["updated_bookmarks"] == 2

    with app.app_context():
        assert db.session.get(Tag, (ACCOUNT, source)) is None
        assert db.session.get(Bookmark, (ACCOUNT, only_source["id"])).tags == [target, other]
        assert db.session.get(Bookmark, (ACCOUNT, both["id"])).tags == [target]
        assert db.session.get(Bookmark, (ACCOUNT, untouched["id"])).tags == [other]


def test_merge_tags_rejects_self_and_missing_target(client, app):
    (source,) = _seed_tags(client, "Solo")

    assert (
        client.post(f"{BASE}/tags/{source}/merge", json={"target_id": source}).status_code
        == 400
    )
    assert (
        client.post(f"{BASE}/tags/{source}/merge", json={"target_id": "ghost"}).status_code
        == 404
    )
    assert client.post(f"{BASE}/tags/{source}/merge", json={}).status_code == 400

    with app.app_context():
        assert db.session.get(Tag, (ACCOUNT, source)) is not None
        with pytest.raises(LibraryError):
            merge_tags(ACCOUNT, source, source)


def test_delete_tag_removes_it_from_bookmarks(client, app):
    tag_id, keep_id = _seed_tags(client, "Old", "Keep")
    bookmark = _bookmark(client, "Tagged", tags=[tag_id, keep_id])

    response = client.delete(f"{BASE}/tags/{tag_id}")
    assert response.get_json()["updated_bookmarks"] == 1

    library = client.get(f"{BASE}/library").get_json()
    assert [row["id"] for row in library["tags"]] == [keep_id]
    assert library["bookmarks"][0]["tags"] == [keep_id]
    assert library["bookmarks"][0]["id"] == bookmark["id"]


def test_tag_rename_and_save_if_missing_keeps_existing(client, app):
    (tag_id,) = _seed_tags(client, "Draft")

    response = client.patch(f"{BASE}/tags/{tag_id}", json={"name": " Final "})
    assert response.get_json()["tag"]["name"] == "Final"
    assert client.patch(f"{BASE}/tags/{tag_id}", json={"name": ""}).status_code == 400

    with app.app_context():
        [tag] = save_tags_if_missing(ACCOUNT, [{"id": tag_id, "name": "Ignored"}])
        assert tag.name == "Final"


def test_reparent_bookmarks_only_touches_listed_folders(app):
    with app.app_context():
        save_bookmark(ACCOUNT, {"id": "b1", "title": "In F", "folder_id": "F"})
        save_bookmark(ACCOUNT, {"id": "b2", "title": "In G", "folder_id": "G"})
        save_bookmark("someone-else", {"id": "b3", "title": "Theirs", "folder_id": "F"})
        db.session.commit()

        assert reparent_bookmarks(ACCOUNT, {"F"}, "P") == 1
        assert reparent_bookmarks(ACCOUNT, [], "P") == 0
        db.session.commit()

        assert db.session.get(Bookmark, (ACCOUNT, "b1")).folder_id == "P"
        assert db.session.get(Bookmark, (ACCOUNT, "b2")).folder_id == "G"
        assert db.session.get(Bookmark, ("someone-else", "b3")).folder_id == "F"


def test_same_document_ids_live_in_separate_accounts(client, app):
    other_base = "/api/v1/accounts/acct-other"

    mine = client.put(f"{BASE}/bookmarks/shared", json={"title": "Mine"})
    theirs = client.put(f"{other_base}/bookmarks/shared", json={"title": "Theirs"})
    assert mine.status_code == 200
    assert theirs.status_code == 200

    assert client.post(f"{BASE}/tags", json={"id": "py", "name": "Python"}).status_code == 201
    assert (
        client.post(f"{other_base}/tags", json={"id": "py", "name": "Snake"}).status_code
        == 201
    )

    renamed = client.patch(f"{other_base}/bookmarks/shared", json={"title": "Still theirs"})
    assert renamed.status_code == 200
    assert client.delete(f"{BASE}/tags/py").status_code == 200

    with app.app_context():
        assert db.session.get(Bookmark, (ACCOUNT, "shared")).title == "Mine"
        assert db.session.get(Bookmark, ("acct-other", "shared")).title == "Still theirs"
        assert db.session.get(Tag, (ACCOUNT, "py")) is None
        assert db.session.get(Tag, ("acct-other", "py")).name == "Snake"


def test_non_string_fields_are_rejected(client, app):
    (tag_id,) = _seed_tags(client, "Keep")
    created = _bookmark(client, "Docs")

    response = client.patch(f"{BASE}/tags/{tag_id}", json={"color": None})
    assert response.status_code == 400
    assert response.get_json() == {"ok": False, "error": "Tag color is required."}
    assert client.patch(f"{BASE}/tags/{tag_id}", json={"name": 12}).status_code == 400
    assert client.post(f"{BASE}/tags", json={"name": "Red", "color": 3}).status_code == 400
    assert client.post(f"{BASE}/tags", json={"name": ["Red"]}).status_code == 400

    recolored = client.patch(f"{BASE}/tags/{tag_id}", json={"color": " #ef4444 "})
    assert recolored.get_json()["tag"]["color"] == "#ef4444"

    response = client.post(f"{BASE}/bookmarks", json={"title": "Pic", "image_url": 5})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Bookmark image_url must be a string."
    for field_name in ("image_url", "url", "title", "description"):
        response = client.patch(f"{BASE}/bookmarks/{created['id']}", json={field_name: 5})
        assert response.status_code == 400, field_name

    cleared = client.patch(f"{BASE}/bookmarks/{created['id']}", json={"image_url": None})
    assert cleared.get_json()["bookmark"]["image_url"] is None

    with app.app_context():
        assert db.session.get(Tag, (ACCOUNT, tag_id)).name == "Keep"
        assert db.session.get(Bookmark, (ACCOUNT, created["id"])).title == "Docs"


def test_missing_documents_report_not_found(client):
    response = client.get(f"{BASE}/bookmarks/nope")
    assert response.status_code == 404
    assert response.get_json() == {"ok": False, "error": "Bookmark not found."}

    response = client.patch(f"{BASE}/tags/nope", json={"name": "X"})
    assert response.get_json() == {"ok": False, "error": "Tag not found."}


def _listed(client, query: str = "") -> set:
    response = client.get(f"{BASE}/bookmarks{query}")
    assert response.status_code == 200
    return {row["title"] for row in response.get_json()["bookmarks"]}


def test_list_bookmarks_filters(client):
    work = client.post(f"{BASE}/folders", json={"name": "Work"}).get_json()["folder"]
    py, misc = _seed_tags(client, "Py", "Misc")

    _bookmark(client, "Flask", tags=[py], folder_id=work["id"], description="Web framework")
    _bookmark(client, "Recipes", tags=[misc])
    _bookmark(client, "Pytest", tags=[py, misc], folder_id=work["id"])
    _bookmark(client, "Old", tags=[py], folder_id=work["id"], is_archived=True)

    assert _listed(client) == {"Flask", "Recipes", "Pytest"}
    assert _listed(client, f"?folder_id={work['id']}") == {"Flask", "Pytest"}
    assert _listed(client, f"?tag_id={misc}") == {"Recipes", "Pytest"}
    assert _listed(client, f"?folder_id={work['id']}&tag_id={misc}") == {"Pytest"}

    assert _listed(client, "?archived=true") == {"Old"}
    assert _listed(client, "?archived=1&folder_id=elsewhere") == {"Old"}
    assert _listed(client, f"?archived=yes&tag_id={misc}") == set()

    assert _listed(client, "?q=FRAMEWORK") == {"Flask"}
    assert _listed(client, "?q=recipes.example") == {"Recipes"}
    assert _listed(client, "?q=py") == {"Pytest"}
    assert _listed(client, "?q=%20%20") == {"Flask", "Recipes", "Pytest"}

    other = client.get("/api/v1/accounts/acct-other/bookmarks").get_json()
    assert other == {"ok": True, "bookmarks": []}
