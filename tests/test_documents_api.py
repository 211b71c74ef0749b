from __future__ import annotations

import io
import uuid

import pytest

from audit_api.config import settings
from audit_api.main import app
from audit_api.services.storage import get_storage_service

from fakes import ingest_text

POLICY_TEXT = (
    "ICT Business Continuity Policy.\n"
    + "Backups of critical systems are taken daily and restoration is tested every quarter. " * 40
).encode("utf-8")

ACTOR_HEADERS = {"x-user-id": "auditor-1"}


def _upload(client, organization_id, filename="policy.txt", data=POLICY_TEXT, content_type="text/plain"):
    return client.post(
        "/documents",
        data={"organization_id": str(organization_id)},
        files={"file": (filename, io.BytesIO(data), content_type)},
        headers=ACTOR_HEADERS,
    )


@pytest.mark.integration
def test_upload_is_ingested_in_the_background(client, organization_id, mock_s3):
    """Upload returns immediately with a queued task; the background run completes the document."""
    response = _upload(client, organization_id)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["task"]["state"] == "QUEUED"
    assert body["file_type"] == "txt"
    assert body["file_size"] == len(POLICY_TEXT)

    objects = mock_s3.list_objects_v2(Bucket=settings.aws.s3_bucket).get("Contents", [])
    assert len(objects) == 1
    assert objects[0]["Key"].startswith(f"{organization_id}/")

    detail = client.get(f"/documents/{body['id']}")
    assert detail.status_code == 200
    document = detail.json()
    assert document["status"] == "COMPLETED"
    assert document["chunk_count"] > 1
    assert document["task"] == {"state": "SUCCEEDED", "attempts": 1, "error": None}


@pytest.mark.integration
def test_upload_rejections(client, organization_id, mock_s3):
    empty = _upload(client, organization_id, data=b"")
    assert empty.status_code == 400
    assert empty.json()["detail"] == "Empty file"

    binary = _upload(client, organization_id, filename="setup.exe", data=b"MZ", content_type="application/x-msdownload")
    assert binary.status_code == 400
    assert binary.json()["detail"].startswith("File type not allowed")

    unknown_org = _upload(client, uuid.uuid4())
    assert unknown_org.status_code == 404

    bad_id = client.post(
        "/documents",
        data={"organization_id": "not-a-uuid"},
        files={"file": ("policy.txt", io.BytesIO(POLICY_TEXT), "text/plain")},
    )
    assert bad_id.status_code == 400


@pytest.mark.integration
def test_blank_upload_ends_in_error(client, organization_id, mock_s3):
    response = _upload(client, organization_id, filename="blank.txt", data=b"   \n  ")
    assert response.status_code == 201

    document = client.get(f"/documents/{response.json()['id']}").json()
    assert document["status"] == "ERROR"
    assert document["error_message"] == "No text content found in document"
    assert document["task"]["state"] == "FAILED"


@pytest.mark.integration
def test_list_stats_download_and_delete(client, organization_id, mock_s3):
    first = _upload(client, organization_id).json()
    _upload(client, organization_id, filename="diagram.png", data=b"\x89PNG\r\n\x1a\n", content_type="image/png")

    listing = client.get("/documents", params={"organization_id": str(organization_id), "limit": 1})
    assert listing.status_code == 200
    assert listing.json()["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert len(listing.json()["items"]) == 1

    completed = client.get("/documents", params={"organization_id": str(organization_id), "status": "COMPLETED"})
    assert completed.json()["pagination"]["total"] == 2

    stats = client.get("/documents/stats", params={"organization_id": str(organization_id)}).json()
    assert stats["total"] == 2
    assert stats["completed"] == 2
    assert stats["total_size"] == len(POLICY_TEXT) + 8

    download = client.get(f"/documents/{first['id']}/download")
    assert download.status_code == 200
    assert download.content == POLICY_TEXT
    assert download.headers["content-disposition"] == 'attachment; filename="policy.txt"'

    deleted = client.delete(f"/documents/{first['id']}", headers=ACTOR_HEADERS)
    assert deleted.json() == {"id": first["id"], "deleted": True}
    assert client.get(f"/documents/{first['id']}").status_code == 404
    assert client.get(f"/documents/{first['id']}/download").status_code == 404


@pytest.mark.integration
def test_reprocess_runs_ingestion_again(client, organization_id, mock_s3):
    document_id = _upload(client, organization_id).json()["id"]
    chunks_before = client.get(f"/documents/{document_id}").json()["chunk_count"]

    response = client.post(f"/documents/{document_id}/reprocess", headers=ACTOR_HEADERS)

    assert response.status_code == 202
    assert response.json()["status"] == "PENDING"
    document = client.get(f"/documents/{document_id}").json()
    assert document["status"] == "COMPLETED"
    assert document["chunk_count"] == chunks_before


@pytest.mark.integration
def test_unknown_document(client):
    assert client.get(f"/documents/{uuid.uuid4()}").status_code == 404
    assert client.get("/documents/not-a-uuid").status_code == 400
    assert client.post(f"/documents/{uuid.uuid4()}/reprocess").status_code == 404


@pytest.mark.integration
def test_presigned_download_url(client, organization_id, mock_s3):
    document_id = _upload(client, organization_id).json()["id"]

    response = client.get(f"/documents/{document_id}/download-url")

    assert response.status_code == 200
    body = response.json()
    assert body["expires_in"] == 3600
    assert settings.aws.s3_bucket in body["download_url"]
    assert f"{organization_id}/" in body["download_url"]


@pytest.mark.parametrize(
    "filename,expected",
    [
        (
            'board "final" policy.txt',
            "attachment; filename=\"board _final_ policy.txt\"; filename*=UTF-8''board%20%22final%22%20policy.txt",
        ),
        (
            "politique-sécurité.txt",
            "attachment; filename=\"politique-s_curit_.txt\"; filename*=UTF-8''politique-s%C3%A9curit%C3%A9.txt",
        ),
    ],
)
def test_download_header_escapes_the_filename(client, db, storage, organization_id, filename, expected):
    document_id = ingest_text(db, storage, organization_id, "Backups are tested quarterly.", filename=filename)
    app.dependency_overrides[get_storage_service] = lambda: storage

    download = client.get(f"/documents/{document_id}/download")

    assert download.status_code == 200
    assert download.headers["content-disposition"] == expected
