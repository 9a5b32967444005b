import asyncio

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

import main
from catalog import MAX_PAGE
from database import MemoryStore
from errors import StorageError
from guards import LOGIN_REQUIRED, SESSION_PRINCIPAL, SUPERADMIN_REQUIRED

from conftest import days_from_now, login, sample_movie

MISSING_ID = "64b7f0c2a1b2c3d4e5f60718"


def seed(movies, **overrides):
    return asyncio.run(movies.create(sample_movie(**overrides)))


# Public API

def test_api_lists_movies_with_pagination(client, movies):
    for i in range(3):
        seed(movies, title=f"Movie {i}", releaseDate=days_from_now(-i - 1))
    seed(movies, title="Next Week", releaseDate=days_from_now(7))

    res = client.get("/api/movies", params={"comingSoon": "false", "limit": 2, "page": 2})
    body = res.json()

    assert res.status_code == 200
    assert body["success"] is True
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
    assert [m["title"] for m in body["data"]] == ["Movie 2"]
    assert body["data"][0]["status"] == "showing"
    assert "posterUrl" in body["data"][0]


def test_api_movie_detail_and_not_found(client, movies):
    movie = seed(movies)
    res = client.get(f"/api/movies/{movie.id}")
    assert res.status_code == 200
    assert res.json()["data"]["ratingText"] == "Not suitable for young persons and children"

    missing = client.get(f"/api/movies/{MISSING_ID}")
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Movie not found", "error": "Movie not found"}


def test_api_huge_page_is_an_empty_page(client, movies):
    seed(movies)
    res = client.get("/api/movies", params={"page": str(10**18)})
    body = res.json()
    assert res.status_code == 200
    assert body["data"] == []
    assert body["pagination"]["page"] == MAX_PAGE
    assert body["pagination"]["total"] == 1


def test_api_stats(client, movies):
    seed(movies, rating="I")
    seed(movies, rating="III", isFull="on")
    data = client.get("/api/stats/movies").json()["data"]
    assert data["total"] == 2
    assert data["byStatus"] == {"showing": 1, "comingSoon": 0, "full": 1}


# Login flow

def test_protected_page_redirects_to_login_then_resumes(client, admin_account):
    res = client.get("/admin/movies/create", follow_redirects=False)
    assert res.status_code == 303
    assert res.headers["location"] == "/auth/login"

    page = client.get("/auth/login").json()
    assert page["template"] == "auth/login"
    assert page["error"] == LOGIN_REQUIRED

    res = login(client, "operator", "secret1")
    assert res.status_code == 303
    assert res.headers["location"] == "/admin/movies/create"

    form = client.get("/admin/movies/create").json()
    assert form["template"] == "admin/create-movie"
    assert form["success"] == "Welcome back, operator!"
    assert form["user"]["username"] == "operator"

    # the saved target is used once
    client.get("/auth/logout")
    assert login(client, "operator", "secret1").headers["location"] == "/admin"


def test_failed_logins_share_one_message(client, admin_account):
    unknown = login(client, "nobody", "secret1")
    wrong = login(client, "operator", "not-the-password")
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["error"] == wrong.json()["error"] == "Invalid username or password"


def test_login_requires_both_fields(client):
    res = login(client, "operator", "")
    assert res.json()["error"] == "Please enter username and password"


def test_guest_pages_redirect_signed_in_managers(client, admin_account):
    login(client, "operator", "secret1")
    res = client.get("/auth/login", follow_redirects=False)
    assert res.status_code == 303
    assert res.headers["location"] == "/admin"


def test_logout_destroys_session(client, admin_account):
    login(client, "operator", "secret1")
    res = client.get("/auth/logout", follow_redirects=False)
    assert res.headers["location"] == "/"
    assert client.get("/admin", follow_redirects=False).headers["location"] == "/auth/login"


def test_profile_and_password_change(client, admin_account):
    login(client, "operator", "secret1")
    profile = client.get("/auth/profile").json()
    assert profile["account"]["email"] == "operator@movie-system.com"
    assert "passwordHash" not in profile["account"]

    bad = client.post("/auth/password", data={"old_password": "nope", "new_password": "newsecret"})
    assert bad.status_code == 422

    ok = client.post("/auth/password", data={"old_password": "secret1", "new_password": "newsecret"},
                     follow_redirects=False)
    assert ok.headers["location"] == "/auth/profile"
    client.get("/auth/logout")
    assert login(client, "operator", "newsecret").status_code == 303


# Admin write surface

def test_create_movie_from_form(client, admin_account):
    login(client, "operator", "secret1")
    form = sample_movie(isFull="on")
    form["genres"] = ["Crime", "Thriller"]

    res = client.post("/admin/movies", data=form, follow_redirects=False)
    assert res.status_code == 303
    assert res.headers["location"] == "/admin"

    dashboard = client.get("/admin").json()
    assert dashboard["success"] == 'Movie "Infernal Affairs" created successfully!'
    assert dashboard["stats"]["total"] == 1
    assert dashboard["stats"]["byStatus"]["full"] == 1
    assert dashboard["movies"][0]["genres"] == ["Crime", "Thriller"]


def test_create_movie_reports_field_errors(client, admin_account):
    login(client, "operator", "secret1")
    res = client.post("/admin/movies", data=sample_movie(rating="IV", duration="0"))
    body = res.json()
    assert res.status_code == 422
    assert body["template"] == "admin/create-movie"
    assert body["error"].startswith("Creation failed")
    assert {"rating", "duration"} <= set(body["errors"])
    assert body["formData"]["title"] == "Infernal Affairs"


def test_update_toggle_and_delete(client, admin_account, movies):
    movie = seed(movies, isFull="on")
    login(client, "operator", "secret1")

    # an unchecked isFull checkbox is not submitted
    res = client.post(f"/admin/movies/{movie.id}", data=sample_movie(title="Infernal Affairs III"),
                      follow_redirects=False)
    assert res.status_code == 303
    updated = client.get(f"/api/movies/{movie.id}").json()["data"]
    assert updated["title"] == "Infernal Affairs III"
    assert updated["isFull"] is False

    client.post(f"/admin/movies/{movie.id}/toggle-full")
    assert client.get(f"/api/movies/{movie.id}").json()["data"]["isFull"] is True

    client.post(f"/admin/movies/{movie.id}/delete", follow_redirects=False)
    assert client.get(f"/api/movies/{movie.id}").status_code == 404

    dashboard = client.get("/admin").json()
    assert dashboard["success"] == "Movie successfully deleted!"


def test_missing_movie_redirects_with_notice(client, admin_account):
    login(client, "operator", "secret1")
    for method, url in [
        ("post", f"/admin/movies/{MISSING_ID}/toggle-full"),
        ("delete", f"/admin/movies/{MISSING_ID}"),
        ("get", f"/admin/movies/{MISSING_ID}/edit"),
    ]:
        res = getattr(client, method)(url, follow_redirects=False)
        assert res.status_code == 303
        assert res.headers["location"] == "/admin"
        assert client.get("/admin").json()["error"] == "The movie does not exist."


def test_update_with_invalid_data_rerenders_edit_form(client, admin_account, movies):
    movie = seed(movies)
    login(client, "operator", "secret1")
    res = client.put(f"/admin/movies/{movie.id}", data=sample_movie(releaseDate="not a date"))
    assert res.status_code == 422
    assert res.json()["template"] == "admin/edit-movie"
    assert res.json()["errors"] == {"release_date": "Invalid date"}


def test_manager_provisioning_requires_superadmin(client, admin_account):
    login(client, "operator", "secret1")
    res = client.post("/admin/managers", data={"username": "clerk", "email": "clerk@movie-system.com",
                                               "password": "secret2"}, follow_redirects=False)
    assert res.headers["location"] == "/admin"
    assert client.get("/admin").json()["error"] == SUPERADMIN_REQUIRED

    client.get("/auth/logout")
    login(client, "test", "test123")
    res = client.post("/admin/managers", data={"username": "clerk", "email": "clerk@movie-system.com",
                                               "password": "secret2"}, follow_redirects=False)
    assert res.status_code == 303
    client.get("/auth/logout")
    assert login(client, "clerk", "secret2").status_code == 303


def test_public_pages(client, movies):
    seed(movies, title="Released")
    seed(movies, title="Upcoming", releaseDate=days_from_now(3))
    home = client.get("/").json()
    assert home["template"] == "index"
    assert [m["title"] for m in home["movies"]] == ["Released"]
    assert client.get("/movies/rating/IIB").json()["rating"] == "IIB"

    res = client.get(f"/movies/{MISSING_ID}", follow_redirects=False)
    assert res.headers["location"] == "/"
    assert client.get("/").json()["error"] == "Movie not found"


def test_unknown_page_is_404(client):
    res = client.get("/no/such/page")
    assert res.status_code == 404
    assert res.json()["template"] == "error"


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "OK"
    assert body["database"] == "connected"


# Storage faults

class BrokenStore(MemoryStore):
    async def find(self, *args, **kwargs):
        raise StorageError("find on movie failed")

    async def ping(self):
        raise StorageError("ping on admin failed")


@pytest.fixture
def broken_client():
    main.app.state.store = BrokenStore()
    with TestClient(main.app) as c:
        yield c
    del main.app.state.store


def test_storage_fault_on_api_returns_failure_envelope(broken_client):
    res = broken_client.get("/api/movies")
    assert res.status_code == 503
    assert res.json()["success"] is False
    assert res.json()["message"] == "Failed to fetch movies"


def test_storage_fault_on_page_renders_generic_error(broken_client):
    res = broken_client.get("/")
    assert res.status_code == 503
    assert res.json()["template"] == "error"
    assert res.json()["message"] == main.TRY_AGAIN


def test_health_reports_degraded_store(broken_client):
    assert broken_client.get("/health").json()["database"] == "disconnected"


class FaultyStore(MemoryStore):
    async def find(self, *args, **kwargs):
        raise RuntimeError("cursor exploded")


@pytest.fixture
def faulty_client():
    main.app.state.store = FaultyStore()
    with TestClient(main.app, raise_server_exceptions=False) as c:
        yield c
    del main.app.state.store


def test_unexpected_error_on_page_renders_error_view(faulty_client):
    res = faulty_client.get("/")
    assert res.status_code == 500
    assert res.json()["template"] == "error"
    assert res.json()["message"] == main.SERVER_ERROR


def test_unexpected_error_on_api_returns_failure_envelope(faulty_client):
    res = faulty_client.get("/api/movies")
    assert res.status_code == 500
    assert res.json()["success"] is False
    assert res.json()["message"] == main.SERVER_ERROR


# Request logging

@pytest.mark.asyncio
async def test_request_logging_leaves_session_untouched():
    session = {SESSION_PRINCIPAL: {"username": "operator"}}
    request = Request({"type": "http", "method": "GET", "path": "/admin", "query_string": b"",
                       "headers": [], "session": session})

    async def call_next(req):
        return "response"

    assert await main.log_requests(request, call_next) == "response"
    assert session == {SESSION_PRINCIPAL: {"username": "operator"}}
