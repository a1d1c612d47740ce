"""HTTP API tests via FastAPI TestClient."""
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from lokaldrive.main import create_app
from lokaldrive.routes import server_info
from lokaldrive.routes.files import _content_disposition


def upload(client, name, content, mime="application/octet-stream"):
    response = client.post("/api/upload", files={"file": (name, content, mime)})
    assert response.status_code == 201, response.text
    return response.json()


def test_upload_returns_camel_case_record(client):
    body = upload(client, "report.PDF", b"abc", "application/pdf")

    assert body["name"] == "report.PDF"
    assert body["size"] == 3
    assert body["type"] == "document"
    assert body["enriched"] is False
    assert body["tags"] == []
    assert "uploadedAt" in body
    assert body["url"] == f"/api/files/{body['id']}/download"
    assert "storageKey" not in body and "storage_key" not in body


def test_upload_without_file_is_rejected(client):
    response = client.post("/api/upload")

    assert response.status_code == 400
    assert response.json()["detail"] == "No file uploaded"


def test_list_get_and_filter(client):
    a = upload(client, "a.txt", b"a")
    b = upload(client, "b.zip", b"bb")

    listed = client.get("/api/files").json()
    assert [f["id"] for f in listed] == [b["id"], a["id"]]

    assert client.get(f"/api/files/{a['id']}").json()["name"] == "a.txt"
    assert [f["name"] for f in client.get("/api/files", params={"q": "B.Z"}).json()] == ["b.zip"]


def test_download_returns_blob(client):
    body = upload(client, "notes.txt", b"hello there", "text/plain")

    response = client.get(body["url"])

    assert response.status_code == 200
    assert response.content == b"hello there"
    assert "notes.txt" in response.headers["content-disposition"]
    assert response.headers["content-type"].startswith("text/plain")


def test_download_with_missing_blob_is_not_found(client, settings):
    body = upload(client, "notes.txt", b"hello")
    blob_path = next(Path(settings.FILE_STORAGE_PATH).iterdir())
    blob_path.unlink()

    response = client.get(body["url"])

    assert response.status_code == 404
    assert response.json() == {"detail": "File content not found"}


def test_content_disposition_escapes_non_ascii_names():
    assert _content_disposition("notes.txt") == 'attachment; filename="notes.txt"'
    assert _content_disposition("résumé.pdf") == "attachment; filename*=utf-8''r%C3%A9sum%C3%A9.pdf"


def test_delete_then_not_found(client):
    body = upload(client, "a.txt", b"a")

    response = client.delete(f"/api/files/{body['id']}")
    assert response.status_code == 200
    assert response.json() == {"deleted": True, "id": body["id"]}

    assert client.delete(f"/api/files/{body['id']}").status_code == 404
    assert client.get(f"/api/files/{body['id']}").status_code == 404
    assert client.get(body["url"]).status_code == 404
    assert client.get("/api/files").json() == []


def test_delete_unknown_id(client):
    response = client.delete("/api/files/unknown")

    assert response.status_code == 404
    assert response.json() == {"detail": "File not found"}


def test_storage_stats(client):
    upload(client, "a.jpg", b"1" * 10)
    upload(client, "b.pdf", b"2" * 4)

    stats = client.get("/api/storage-stats").json()

    assert stats["used"] == 14
    assert stats["total"] == 1_000_000
    assert stats["available"] == 1_000_000 - 14
    assert stats["fileCount"] == 2
    assert stats["byType"] == [
        {"category": "image", "name": "Images", "value": 10, "color": "#f43f5e"},
        {"category": "document", "name": "Docs", "value": 4, "color": "#3b82f6"},
    ]


def test_patch_metadata(client):
    body = upload(client, "a.txt", b"a")

    response = client.patch(f"/api/files/{body['id']}", json={"tags": ["todo", "home"]})

    assert response.status_code == 200
    patched = response.json()
    assert patched["tags"] == ["todo", "home"]
    assert patched["enriched"] is True
    assert client.patch("/api/files/unknown", json={"description": "x"}).status_code == 404


def test_enrich_endpoint(client, fake_enricher):
    body = upload(client, "Project_Proposal_Q4.pdf", b"pdf")

    response = client.post(f"/api/files/{body['id']}/enrich")

    assert response.status_code == 200
    enriched = response.json()
    assert enriched["enriched"] is True
    assert enriched["description"] == fake_enricher.description
    assert enriched["tags"] == fake_enricher.tags
    assert client.post("/api/files/unknown/enrich").status_code == 404


def test_batch_upload_keeps_order(client):
    response = client.post(
        "/api/upload/batch",
        files=[
            ("files", ("a.txt", b"a", "text/plain")),
            ("files", ("b.zip", b"bb", "application/zip")),
        ],
    )

    assert response.status_code == 201
    body = response.json()
    assert [f["name"] for f in body["uploaded"]] == ["a.txt", "b.zip"]
    assert body["failed"] is None
    assert [f["name"] for f in client.get("/api/files").json()] == ["b.zip", "a.txt"]


def test_health(client):
    upload(client, "a.txt", b"a")

    body = client.get("/api/health").json()

    assert body == {"status": "ok", "metadataBackend": "json", "fileCount": 1}


def test_server_info(client, monkeypatch):
    monkeypatch.setattr(server_info, "get_local_ips", lambda: ["192.168.1.20"])

    body = client.get("/api/server-info").json()

    assert body == {"port": 3001, "ips": ["192.168.1.20"], "urls": ["http://192.168.1.20:3001"]}


def test_state_survives_restart(settings, fake_enricher):
    with TestClient(create_app(settings, enricher=fake_enricher)) as first:
        body = upload(first, "kept.txt", b"kept")

    with TestClient(create_app(settings, enricher=fake_enricher)) as second:
        listed = second.get("/api/files").json()
        assert [f["id"] for f in listed] == [body["id"]]
        assert second.get(body["url"]).content == b"kept"


def test_startup_removes_orphaned_blobs(settings, tmp_path, fake_enricher):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "1-2-orphan.txt").write_bytes(b"left behind")

    with TestClient(create_app(settings, enricher=fake_enricher)) as test_client:
        assert test_client.get("/api/files").json() == []

    assert not (uploads / "1-2-orphan.txt").exists()


def test_corrupt_metadata_fails_startup(settings, tmp_path):
    (tmp_path / "files-metadata.json").write_text("{broken", encoding="utf-8")

    with pytest.raises(Exception, match="Corrupt or unreadable"):
        with TestClient(create_app(settings)):
            pass


def test_auto_enrich_after_upload(settings, fake_enricher):
    settings.AUTO_ENRICH = True

    with TestClient(create_app(settings, enricher=fake_enricher)) as test_client:
        body = upload(test_client, "report.pdf", b"r")
        deadline = time.monotonic() + 5
        record = body
        while not record["enriched"] and time.monotonic() < deadline:
            time.sleep(0.05)
            record = test_client.get(f"/api/files/{body['id']}").json()

    assert record["enriched"] is True
    assert record["description"] == fake_enricher.description
    assert fake_enricher.calls == [("report.pdf", "document")]
