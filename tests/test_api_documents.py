"""
tests/test_api_documents.py -- Integration tests for /api/v1/documents routes.

Coverage:
  - upload: 201 happy path, type/MIME/empty checks, auth required
  - list / detail / 404
  - download: bytes served, download_count incremented
  - delete: owner or admin only, share links removed with the document
  - analytics: owner or admin only
"""

from __future__ import annotations

from conftest import PDF_BYTES, create_user, upload_document


class TestUpload:
    def test_upload_pdf(self, api):
        user_id, token = create_user(api, "uploader")
        doc = upload_document(api, token, title="Foundation", filename="foundation.pdf")
        assert doc["title"] == "Foundation"
        assert doc["uploaded_by"] == user_id
        assert doc["file_size"] == len(PDF_BYTES)
        assert doc["download_count"] == 0
        assert "filepath" not in doc

    def test_upload_epub(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            data={"title": "Emma", "doc_type": "magazine"},
            files={"file": ("emma.epub", b"PK\x03\x04epub", "application/epub+zip")},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["doc_type"] == "magazine"

    def test_disallowed_extension(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            data={"title": "Notes"},
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["fields"] == ["file"]

    def test_mime_must_match_extension(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            data={"title": "Sneaky"},
            files={"file": ("sneaky.pdf", b"#!/bin/sh", "application/x-sh")},
        )
        assert resp.status_code == 400

    def test_empty_file_rejected(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            data={"title": "Blank"},
            files={"file": ("blank.pdf", b"", "application/pdf")},
        )
        assert resp.status_code == 400

    def test_unknown_doc_type_rejected(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            data={"title": "Odd", "doc_type": "scroll"},
            files={"file": ("odd.pdf", PDF_BYTES, "application/pdf")},
        )
        assert resp.status_code == 400

    def test_missing_title_rejected(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            headers=api.admin_headers,
            files={"file": ("untitled.pdf", PDF_BYTES, "application/pdf")},
        )
        assert resp.status_code == 400
        assert "title" in resp.json()["error"]["fields"]

    def test_upload_requires_auth(self, api):
        resp = api.client.post(
            "/api/v1/documents",
            data={"title": "Anon"},
            files={"file": ("anon.pdf", PDF_BYTES, "application/pdf")},
        )
        assert resp.status_code == 401


class TestRead:
    def test_list_and_detail(self, api):
        doc = upload_document(api, api.admin_token, title="Listed")
        listing = api.client.get("/api/v1/documents", headers=api.admin_headers)
        assert listing.status_code == 200
        assert doc["id"] in {d["id"] for d in listing.json()}
        detail = api.client.get(f"/api/v1/documents/{doc['id']}", headers=api.admin_headers)
        assert detail.status_code == 200
        assert detail.json()["title"] == "Listed"

    def test_unknown_document_404(self, api):
        resp = api.client.get("/api/v1/documents/99999", headers=api.admin_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_list_requires_auth(self, api):
        assert api.client.get("/api/v1/documents").status_code == 401

    def test_any_member_downloads_and_count_increments(self, api):
        doc = upload_document(api, api.admin_token, title="Downloadable")
        _, reader = create_user(api, "reader")
        resp = api.client.get(f"/api/v1/documents/{doc['id']}/download", headers=api.auth(reader))
        assert resp.status_code == 200
        assert resp.content == PDF_BYTES
        assert resp.headers["content-type"] == "application/pdf"
        detail = api.client.get(f"/api/v1/documents/{doc['id']}", headers=api.auth(reader)).json()
        assert detail["download_count"] == 1


class TestDeleteAndAnalytics:
    def test_non_owner_cannot_delete(self, api):
        _, owner = create_user(api, "owner_a")
        _, intruder = create_user(api, "intruder_a")
        doc = upload_document(api, owner, title="Mine")
        resp = api.client.delete(f"/api/v1/documents/{doc['id']}", headers=api.auth(intruder))
        assert resp.status_code == 403
        assert api.client.get(f"/api/v1/documents/{doc['id']}", headers=api.auth(owner)).status_code == 200

    def test_owner_delete_removes_share_links(self, api):
        _, owner = create_user(api, "owner_b")
        doc = upload_document(api, owner, title="Ephemeral")
        share = api.client.post(f"/api/v1/documents/{doc['id']}/share", headers=api.auth(owner), json={})
        token = share.json()["token"]

        resp = api.client.delete(f"/api/v1/documents/{doc['id']}", headers=api.auth(owner))
        assert resp.status_code == 204
        assert api.client.get(f"/api/v1/documents/{doc['id']}", headers=api.auth(owner)).status_code == 404
        assert api.client.get(f"/api/v1/share/{token}").status_code == 404
        assert api.document_store.get_share_link(token) is None

    def test_admin_deletes_any_document(self, api):
        _, owner = create_user(api, "owner_c")
        doc = upload_document(api, owner, title="Moderated")
        resp = api.client.delete(f"/api/v1/documents/{doc['id']}", headers=api.admin_headers)
        assert resp.status_code == 204

    def test_analytics_owner_only(self, api):
        _, owner = create_user(api, "owner_d")
        _, stranger = create_user(api, "stranger_d")
        doc = upload_document(api, owner, title="Measured")
        api.client.post(f"/api/v1/documents/{doc['id']}/share", headers=api.auth(owner), json={"ttl_hours": 2})

        resp = api.client.get(f"/api/v1/documents/{doc['id']}/analytics", headers=api.auth(owner))
        assert resp.status_code == 200
        assert resp.json()["total_links"] == 1
        assert resp.json()["active_links"] == 1
        assert api.client.get(f"/api/v1/documents/{doc['id']}/analytics", headers=api.auth(stranger)).status_code == 403
