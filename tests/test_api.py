"""
Superficie HTTP con TestClient. No se usa `with TestClient(...)`: el lifespan
conectaria a PostgreSQL; los servicios se reemplazan por fakes en app.state.
"""

import inspect

import pytest
from fastapi.testclient import TestClient

from filmmap.core.settings import Settings
from filmmap.main import create_app
from filmmap.mapsync.registry import MapViewRegistry
from filmmap.schemas.films import FilmStatus
from filmmap.services.films import FilmService
from filmmap.services.moderation import ModerationService

from conftest import FakeGeocoder, FakeIdentity, loaded_widget, make_film, make_session

USER = {"Authorization": "Bearer token-1"}
MOD = {"Authorization": "Bearer token-mod"}


@pytest.fixture
def app(repository, profiles, assets):
    settings = Settings()
    app = create_app(settings)
    geocoder = FakeGeocoder("Rennes, Brittany, France")
    identity = FakeIdentity(make_session("user-1", "token-1"), make_session("mod-1", "token-mod"))
    app.state.assets = assets
    app.state.films = repository
    app.state.profiles = profiles
    app.state.film_service = FilmService(repository, profiles)
    app.state.moderation = ModerationService(repository, profiles)
    app.state.geocoder = geocoder
    app.state.identity = identity
    app.state.registry = MapViewRegistry(settings, geocoder, repository, identity, widget_factory=loaded_widget)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestFilms:

    def test_public_list_only_approved(self, client, repository):
        approved = repository.add(make_film(title="Approved"))
        repository.add(make_film(title="Waiting", status=FilmStatus.PENDING))
        response = client.get("/films")
        assert response.status_code == 200
        assert [f["id"] for f in response.json()["items"]] == [approved.id]
        assert response.headers["x-operation-id"]

    def test_pending_detail_is_hidden(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING, user_id="user-1"))
        response = client.get(f"/films/{film.id}")
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "Film not found."}
        assert client.get(f"/films/{film.id}", headers=USER).status_code == 200

    def test_delete_requires_session(self, client, repository):
        film = repository.add(make_film())
        response = client.delete(f"/films/{film.id}")
        assert response.status_code == 401
        assert response.json()["error"] == "session"

    def test_delete_by_stranger(self, client, repository):
        film = repository.add(make_film(user_id="owner-1"))
        response = client.delete(f"/films/{film.id}", headers=USER)
        assert response.status_code == 403
        assert film.id in repository.rows

    def test_moderator_deletes(self, client, repository):
        film = repository.add(make_film(user_id="owner-1"))
        assert client.delete(f"/films/{film.id}", headers=MOD).status_code == 204
        assert film.id not in repository.rows

    def test_malformed_authorization_header(self, client):
        response = client.get("/films/mine", headers={"Authorization": "Token abc"})
        assert response.status_code == 400


class TestModeration:

    def test_reject_cancel_and_default_reason(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING))
        cancelled = client.post(f"/moderation/{film.id}/reject", json={"reason": None}, headers=MOD)
        assert cancelled.status_code == 204
        assert repository.get(film.id).status == FilmStatus.PENDING

        rejected = client.post(f"/moderation/{film.id}/reject", json={"reason": ""}, headers=MOD)
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"
        assert rejected.json()["rejection_reason"] == "No reason provided"

    def test_non_moderator(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING))
        assert client.post(f"/moderation/{film.id}/approve", headers=USER).status_code == 403
        assert client.get("/moderation/pending", headers=USER).status_code == 403

    def test_approve(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING))
        response = client.post(f"/moderation/{film.id}/approve", headers=MOD)
        assert response.json()["status"] == "approved"
        assert [f.id for f in repository.list_approved()] == [film.id]


class TestGeocoding:

    def test_query_required(self, client):
        response = client.get("/geocode")
        assert response.status_code == 400
        assert response.json()["detail"] == "Query parameter is required"

    def test_forward(self, client):
        response = client.get("/geocode/forward", params={"q": "Paris"})
        assert response.json()["items"][0]["center"] == [2.35, 48.85]

    def test_reverse(self, client):
        response = client.get("/geocode/reverse", params={"lng": -2.93, "lat": 48.2})
        assert response.json() == {"place_name": "Rennes, Brittany, France"}

    def test_not_configured(self, app, client):
        app.state.geocoder = None
        response = client.get("/geocode", params={"query": "Paris"})
        assert response.status_code == 500
        assert response.json()["error"] == "configuration"


class TestMapViews:

    def test_anonymous_view_is_read_only(self, client, repository):
        repository.add(make_film())
        view = client.post("/map/views").json()
        assert view["state"] == "ready"
        assert view["read_only"] is True
        assert view["feature_count"] == 1

        click = client.post(f"/map/views/{view['id']}/click", json={"lng": 100.0, "lat": -10.0})
        assert click.json()["kind"] == "ignored"

    def test_submit_flow(self, client, repository):
        view = client.post("/map/views", headers=USER).json()
        view_id = view["id"]
        assert view["read_only"] is False

        click = client.post(f"/map/views/{view_id}/click", json={"lng": -2.93, "lat": 48.2}).json()
        assert click["kind"] == "pending"
        assert click["pending"]["label"] == "Rennes, Brittany, France"

        assert client.post(f"/map/views/{view_id}/pending/confirm").json()["confirmed"] is True
        client.put(f"/map/views/{view_id}/draft", json={"title": "Breizh Queer", "year": "1994"})

        response = client.post(f"/map/views/{view_id}/submit")
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Film added successfully! It will be visible to others after review."
        assert body["film"]["status"] == "pending"
        assert body["film"]["coordinates"] == {"lng": -2.93, "lat": 48.2}

        state = client.get(f"/map/views/{view_id}").json()
        assert state["pending"] is None
        assert state["draft"]["title"] == ""

        mine = client.get("/films/mine", headers=USER).json()["items"]
        assert [f["title"] for f in mine] == ["Breizh Queer"]
        assert mine[0]["coordinates"] == {"lng": -2.93, "lat": 48.2}

    def test_submit_without_location(self, client):
        view_id = client.post("/map/views", headers=USER).json()["id"]
        response = client.post(f"/map/views/{view_id}/submit")
        assert response.status_code == 422
        assert response.json()["detail"] == "Please select a location on the map first."

    def test_sign_in_enables_editing(self, client):
        view_id = client.post("/map/views").json()["id"]
        assert client.put(f"/map/views/{view_id}/session", headers=USER).json()["read_only"] is False
        assert client.delete(f"/map/views/{view_id}/session").json()["read_only"] is True

    def test_closed_view(self, client):
        view_id = client.post("/map/views").json()["id"]
        assert client.delete(f"/map/views/{view_id}").status_code == 204
        assert client.get(f"/map/views/{view_id}").status_code == 404

    def test_viewer_page(self, client):
        response = client.get("/map/viewer")
        assert response.status_code == 200
        assert "leaflet" in response.text


def test_health(client, monkeypatch):
    monkeypatch.setattr("filmmap.routers.health.ping", lambda: True)
    assert client.get("/health").json() == {"database": True, "asset_store": True, "status": "ok"}


class TestProfiles:

    def test_update_and_dashboard(self, client, repository):
        repository.add(make_film(title="Mine", user_id="user-1", status=FilmStatus.PENDING))
        profile = client.patch("/profiles/me", json={"full_name": "Alex Doe"}, headers=USER).json()
        assert profile["full_name"] == "Alex Doe"
        assert profile["is_moderator"] is False

        dashboard = client.get("/profiles/me/dashboard", headers=USER).json()
        assert dashboard["counts"] == {"pending": 1, "approved": 0, "rejected": 0}
        assert dashboard["profile"]["full_name"] == "Alex Doe"


class TestMapExtras:

    def test_fly_to_search_result(self, client):
        view_id = client.post("/map/views").json()["id"]
        state = client.post(f"/map/views/{view_id}/fly", json={"place_name": "Tokyo", "center": [139.69, 35.68]})
        assert state.json()["camera"] == {"center": [139.69, 35.68], "zoom": 12}

    def test_rejects_non_image_attachment(self, client):
        view_id = client.post("/map/views", headers=USER).json()["id"]
        response = client.put(
            f"/map/views/{view_id}/image", files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Please select an image file (jpg, png, etc.)"

    def test_cancel_pending(self, client):
        view_id = client.post("/map/views", headers=USER).json()["id"]
        client.post(f"/map/views/{view_id}/click", json={"lng": -2.93, "lat": 48.2})
        assert client.delete(f"/map/views/{view_id}/pending").status_code == 204
        assert client.get(f"/map/views/{view_id}").json()["pending"] is None

    def test_view_endpoints_share_the_event_loop(self, app):
        # El estado de cada vista solo se toca desde el loop, nunca desde el threadpool
        routes = [r for r in app.routes if getattr(r, "path", "").startswith("/map/views")]
        assert len(routes) >= 10
        assert all(inspect.iscoroutinefunction(r.endpoint) for r in routes)


class TestFilmEdits:

    def test_null_title_is_rejected(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING, user_id="user-1"))
        response = client.patch(f"/films/{film.id}", json={"title": None}, headers=USER)
        assert response.status_code == 422
        assert response.json() == {"error": "validation", "detail": "Title is required."}
        assert repository.updates == []

    def test_partial_edit(self, client, repository):
        film = repository.add(make_film(status=FilmStatus.PENDING, user_id="user-1"))
        response = client.patch(f"/films/{film.id}", json={"director": None, "year": "2001"}, headers=USER)
        assert response.status_code == 200
        assert repository.updates == [(film.id, {"director": None, "year": "2001"})]
