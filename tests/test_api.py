"""
HTTP tests for the FastAPI app, backed by the in-process store.
"""

import pytest
from fastapi.testclient import TestClient

from config import AppConfig
from main import create_app

from helpers import ADMIN_EMAIL, ADMIN_PASSWORD, OTHER_EMAIL, OTHER_PASSWORD


@pytest.fixture
def client(config, backend):
    app = create_app(config, backend=backend)
    with TestClient(app) as client:
        yield client


def login(client, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def auth(token_body):
    return {"Authorization": f"Bearer {token_body['access_token']}"}


@pytest.fixture
def admin_headers(client):
    body = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    response = client.post("/api/admin/claim", headers=auth(body))
    assert response.status_code == 200, response.text
    return auth(body)


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_backend_probe(client):
    body = client.get("/test").json()
    assert body["mode"] == "memory"
    assert body["env"] == "configured"
    assert body["schema"] == "ready"


class TestPublic:
    def test_settings(self, client):
        body = client.get("/api/settings").json()
        assert body["settings"]["seo"]["title"] == "Portfolio"
        assert "admin_user_id" not in body["settings"] or body["settings"]["admin_user_id"] is None
        assert body["notice"] is None

    def test_only_published_projects(self, client, backend):
        backend.add_rows("projects", [
            {"slug": "public-one", "title": "Public", "published": True, "tags": ["AI"]},
            {"slug": "secret-draft", "title": "Draft", "published": False},
        ])
        body = client.get("/api/projects").json()
        assert [p["slug"] for p in body["projects"]] == ["public-one"]
        assert client.get("/api/projects", params={"tag": "ai"}).json()["projects"][0]["slug"] == "public-one"
        assert client.get("/api/projects/public-one").json()["title"] == "Public"
        assert client.get("/api/projects/secret-draft").status_code == 404

    def test_limit_bounds(self, client):
        assert client.get("/api/projects", params={"limit": 0}).status_code == 422
        assert client.get("/api/writing", params={"limit": 101}).status_code == 422

    def test_writing(self, client, backend):
        backend.add_rows("writing_categories", [{"id": "c1", "name": "Essays"}])
        backend.add_rows("writing_items", [{"title": "Post", "url": "https://a.io/p", "category_id": "c1"}])
        body = client.get("/api/writing").json()
        assert body["categories"][0]["name"] == "Essays"
        assert body["items"][0]["category_name"] == "Essays"

    def test_events_set_session_cookie_once(self, client):
        first = client.post("/api/events", json={"event": "page_view", "path": "/"})
        assert first.status_code == 202
        assert first.json() == {"ok": True}
        assert "analytics_sid" in first.cookies

        second = client.post("/api/events", json={"event": "page_view", "path": "/projects"})
        assert second.status_code == 202
        assert "analytics_sid" not in second.cookies

    def test_unknown_event_kind(self, client):
        assert client.post("/api/events", json={"event": "hack", "path": "/"}).status_code == 422


class TestAuthAndClaim:
    def test_bad_login(self, client):
        response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "nope"})
        assert response.status_code == 401
        unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"})
        assert unknown.status_code == 401
        blank = client.post("/api/auth/login", json={"email": " ", "password": "x"})
        assert blank.status_code == 401

    def test_login_with_backend_down(self, client, backend):
        backend.reachable = False
        response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert response.status_code == 502
        assert "unreachable" in response.json()["detail"]

    def test_login_with_schema_missing(self, client, backend):
        backend.schema_ready = False
        response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert response.status_code == 200
        assert response.json()["state"] == "SCHEMA_MISSING"

    def test_claim_flow(self, client):
        body = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
        assert body["state"] == "CLAIM_AVAILABLE"
        assert body["user"]["email"] == ADMIN_EMAIL

        claimed = client.post("/api/admin/claim", headers=auth(body))
        assert claimed.json()["state"] == "AUTHORIZED"

        state = client.get("/api/admin/state", headers=auth(body)).json()
        assert state["state"] == "AUTHORIZED" and state["email"] == ADMIN_EMAIL

        again = client.post("/api/admin/claim", headers=auth(body))
        assert again.status_code == 409
        assert again.json()["detail"] == "Admin already claimed"

    def test_second_user_cannot_claim(self, client, admin_headers):
        body = login(client, OTHER_EMAIL, OTHER_PASSWORD)
        assert body["state"] == "NOT_AUTHORIZED"
        assert client.post("/api/admin/claim", headers=auth(body)).status_code == 409

    def test_claim_needs_session(self, client):
        assert client.post("/api/admin/claim").status_code == 401
        assert client.get("/api/admin/state").json()["state"] == "UNAUTHENTICATED"

    def test_bootstrap_token(self, client, backend):
        backend.seed_settings(bootstrap_token="s3cret")
        body = login(client, OTHER_EMAIL, OTHER_PASSWORD)
        assert body["state"] == "BOOTSTRAP_TOKEN_REQUIRED"

        wrong = client.post("/api/admin/bootstrap", json={"token": "guess"}, headers=auth(body))
        assert wrong.status_code == 409
        right = client.post("/api/admin/bootstrap", json={"token": "s3cret"}, headers=auth(body))
        assert right.json()["state"] == "AUTHORIZED"

    def test_logout_revokes(self, client, admin_headers):
        assert client.get("/api/admin/settings", headers=admin_headers).status_code == 200
        assert client.post("/api/auth/logout", headers=admin_headers).json()["success"] is True
        assert client.get("/api/admin/settings", headers=admin_headers).status_code == 403


class TestAdmin:
    def test_requires_admin(self, client, admin_headers):
        assert client.get("/api/admin/projects").status_code == 401
        other = auth(login(client, OTHER_EMAIL, OTHER_PASSWORD))
        assert client.get("/api/admin/projects", headers=other).status_code == 403
        assert client.get("/api/admin/projects", headers=admin_headers).status_code == 200

    def test_project_crud(self, client, admin_headers):
        created = client.post(
            "/api/admin/projects",
            json={"slug": "launch", "title": "Launch", "published": True, "tags": ["AI"]},
            headers=admin_headers,
        )
        assert created.status_code == 201
        project = created.json()
        assert client.get("/api/projects").json()["projects"][0]["slug"] == "launch"

        renamed = client.put(
            f"/api/admin/projects/{project['id']}",
            json={"slug": "relaunch", "title": "Launch", "published": True},
            headers=admin_headers,
        )
        assert renamed.status_code == 409

        duplicate = client.post("/api/admin/projects", json={"slug": "launch", "title": "Again"}, headers=admin_headers)
        assert duplicate.status_code == 409

        deleted = client.delete(f"/api/admin/projects/{project['id']}", headers=admin_headers)
        assert deleted.json() == {"deleted": True}
        assert client.get(f"/api/admin/projects/{project['id']}", headers=admin_headers).status_code == 404

    def test_invalid_project_lists_fields(self, client, admin_headers):
        response = client.post(
            "/api/admin/projects",
            json={"slug": "!!!", "title": "", "media": [{"type": "image", "url": "javascript:alert(1)"}]},
            headers=admin_headers,
        )
        assert response.status_code == 422
        fields = {e["field"] for e in response.json()["detail"]}
        assert {"slug", "title", "media[0].url"} <= fields

    def test_settings_update_and_conflict(self, client, admin_headers):
        current = client.get("/api/admin/settings", headers=admin_headers).json()
        update = {"seo": {"title": "New Title", "description": "Hello"}, "expected_updated_at": current["updated_at"]}
        saved = client.put("/api/admin/settings", json=update, headers=admin_headers)
        assert saved.status_code == 200
        assert client.get("/api/settings").json()["settings"]["seo"]["title"] == "New Title"

        stale = client.put("/api/admin/settings", json=update, headers=admin_headers)
        assert stale.status_code == 409

    def test_settings_rejects_unsafe_links(self, client, admin_headers):
        update = {"nav_config": {"links": [{"href": "javascript:alert(1)", "label": "x", "visible": True}]}}
        response = client.put("/api/admin/settings", json=update, headers=admin_headers)
        assert response.status_code == 422

    def test_writing_admin(self, client, admin_headers):
        category = client.post("/api/admin/writing/categories", json={"name": "Notes"}, headers=admin_headers)
        assert category.status_code == 201
        category_id = category.json()["id"]

        bad = client.post("/api/admin/writing/items", json={"title": "T", "url": "ftp://x"}, headers=admin_headers)
        assert bad.status_code == 422
        item = client.post(
            "/api/admin/writing/items",
            json={"title": "T", "url": "https://a.io/t", "category_id": category_id},
            headers=admin_headers,
        )
        assert item.status_code == 201

        client.put(
            f"/api/admin/writing/categories/{category_id}",
            json={"name": "Notes", "enabled": False},
            headers=admin_headers,
        )
        assert client.get("/api/writing").json()["items"] == []
        assert len(client.get("/api/admin/writing/items", headers=admin_headers).json()) == 1

    def test_analytics(self, client, admin_headers):
        client.post("/api/events", json={"event": "page_view", "path": "/"})
        client.post("/api/events", json={"event": "resume_download", "path": "/resume"})
        summary = client.get("/api/admin/analytics", params={"days": 7}, headers=admin_headers).json()
        assert summary["page_views"] == 1
        assert summary["resume_downloads"] == 1
        assert summary["total_visitors"] == 1

    def test_seed_and_home(self, client, admin_headers):
        seeded = client.post("/api/admin/seed", headers=admin_headers).json()
        assert seeded["projects_inserted"] == 3
        home = client.get("/api/home").json()
        assert len(home["featured_projects"]) == 3
        assert home["notice"] is None

    def test_health(self, client, admin_headers):
        assert client.get("/api/admin/health").status_code == 401
        report = client.get("/api/admin/health", headers=admin_headers).json()
        assert report["env"]["ok"] and report["schema"]["ok"] and report["rls"]["ok"]


class TestDegraded:
    def test_schema_missing(self, client, backend):
        backend.schema_ready = False
        settings = client.get("/api/settings").json()
        assert settings["settings"]["seo"]["title"]
        assert settings["notice"]
        assert client.get("/api/projects").json()["projects"] == []
        assert client.get("/api/projects/anything").status_code == 503
        assert client.get("/api/admin/state").json()["state"] == "SCHEMA_MISSING"

    def test_env_missing(self):
        with TestClient(create_app(AppConfig())) as client:
            assert client.get("/api/admin/state").json()["state"] == "ENV_MISSING"
            assert client.post("/api/auth/login", json={"email": "a@b.co", "password": "x"}).status_code == 503
            body = client.get("/api/settings").json()
            assert body["settings"]["seo"]["title"] and body["notice"]
            assert client.get("/test").json()["env"] == "missing"
