import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import main
from accounts import ManagerRepository
from database import MemoryStore
from movies import MovieRepository


def sample_movie(**overrides):
    data = {
        "title": "Infernal Affairs",
        "director": "Andrew Lau",
        "description": "An undercover cop and a mole inside the police race to expose each other.",
        "posterUrl": "https://example.com/posters/infernal-affairs.jpg",
        "rating": "IIB",
        "releaseDate": "2002-12-12",
        "duration": "101",
        "genres": "Crime, Thriller",
        "cast": "Andy Lau, Tony Leung",
        "showTimes": "14:00, 19:30",
    }
    data.update(overrides)
    return data


def days_from_now(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def accounts(store):
    return ManagerRepository(store)


@pytest.fixture
def movies(store):
    return MovieRepository(store)


@pytest.fixture
def client(store):
    main.app.state.store = store
    with TestClient(main.app) as c:
        yield c
    del main.app.state.store


@pytest.fixture
def admin_account(client, accounts):
    """A plain admin; the default superadmin `test` is seeded by app startup."""
    return asyncio.run(
        accounts.create(username="Operator", email="operator@movie-system.com", password="secret1", role="admin")
    )


def login(client, username, password, follow_redirects=False):
    return client.post(
        "/auth/login",
        data={"username": username, "password": password},
        follow_redirects=follow_redirects,
    )
