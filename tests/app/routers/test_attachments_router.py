"""Tests for the attachments and exports routers."""

from uuid import UUID, uuid4

import pytest

from app.core.errors import TransientScanError


def _ingest(client, headers, message_id, name="clip.mov", mime_type="video/quicktime"):
    return client.post(
        "/attachments",
        json={
            "message_id": str(message_id),
            "name": name,
            "mime_type": mime_type,
            "size_bytes": 1024,
        },
        headers=headers,
    )


def test_ingest_attachment(client, auth_headers, scan_dispatcher, setup_message, alice):
    r = _ingest(client, auth_headers(alice), setup_message.id)
    assert r.status_code == 202
    data = r.json()
    assert data["scan_status"] == "pending"
    assert data["kind"] == "video"
    assert data["cdn_url"] is None
    assert [str(i) for i in scan_dispatcher.dispatched] == [data["id"]]


def test_ingest_on_someone_elses_message(client, auth_headers, setup_message, bob):
    r = _ingest(client, auth_headers(bob), setup_message.id)
    assert r.status_code == 403


def test_ingest_on_unknown_message(client, auth_headers, alice):
    r = _ingest(client, auth_headers(alice), uuid4())
    assert r.status_code == 404


def test_attachment_status_after_scan(client, auth_headers, gateway, setup_message, alice, bob):
    attachment_id = _ingest(client, auth_headers(alice), setup_message.id).json()["id"]
    gateway.attachments.process_scan(UUID(attachment_id))

    r = client.get(f"/attachments/{attachment_id}", headers=auth_headers(bob))
    assert r.status_code == 200
    assert r.json()["scan_status"] == "clean"
    assert r.json()["cdn_url"]


def test_reingest_failed_attachment(
    client, auth_headers, gateway, scanner, setup_message, alice
):
    attachment_id = _ingest(client, auth_headers(alice), setup_message.id).json()["id"]
    r = client.post(f"/attachments/{attachment_id}/reingest", headers=auth_headers(alice))
    assert r.status_code == 409

    scanner.outcomes = [TransientScanError("down")] * 3
    for _ in range(2):
        with pytest.raises(TransientScanError):
            gateway.attachments.process_scan(UUID(attachment_id))
    assert gateway.attachments.process_scan(UUID(attachment_id)).scan_status == "error"

    r = client.post(f"/attachments/{attachment_id}/reingest", headers=auth_headers(alice))
    assert r.status_code == 202
    assert r.json()["supersedes_id"] == attachment_id
    assert r.json()["reingest_count"] == 1


def test_create_and_get_export(client, auth_headers, setup_thread, alice, carol):
    r = client.post(
        "/exports", json={"thread_id": str(setup_thread.id)}, headers=auth_headers(alice)
    )
    assert r.status_code == 202
    job_id = r.json()["id"]

    r = client.get(f"/exports/{job_id}", headers=auth_headers(alice))
    assert r.status_code == 200
    assert r.json()["status"] == "pending"

    r = client.get(f"/exports/{job_id}", headers=auth_headers(carol))
    assert r.status_code == 403


def test_export_unknown_thread(client, auth_headers, alice):
    r = client.post("/exports", json={"thread_id": str(uuid4())}, headers=auth_headers(alice))
    assert r.status_code == 404
