import json

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from filevault.config import Settings
from filevault.database import build_engine, build_session_maker, create_tables
from filevault.main import create_app

TEST_SECRET = "test-signing-secret"
# small cap so boundary tests stay cheap
TEST_MAX_UPLOAD = 1024


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        STORAGE_ROOT=tmp_path / "storage",
        JWT_SECRET=TEST_SECRET,
        MAX_UPLOAD_BYTES=TEST_MAX_UPLOAD,
        ARGON2_TIME_COST=1,
        ARGON2_MEMORY_COST=1024,
        ARGON2_PARALLELISM=1,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db_session(settings):
    engine = build_engine(settings)
    await create_tables(engine)
    session_maker = build_session_maker(engine)
    try:
        async with session_maker() as session:
            yield session
    finally:
        await engine.dispose()


def signup(client, username: str = "alice", password: str = "password123") -> dict:
    resp = client.post("/api/auth/signup", json={"username": username, "password": password})
    assert resp.status_code == status.HTTP_201_CREATED, resp.text
    return resp.json()


def auth_headers(body: dict) -> dict:
    return {"Authorization": f"Bearer {body['access_token']}"}


def upload(client, headers, content: bytes = b"hello world", name: str = "hello.txt", declared=None, algo="AES-256-GCM"):
    metadata = {
        "original_name": name,
        "mime_type": "text/plain",
        "size_bytes": len(content) if declared is None else declared,
        "client_encryption_algo": algo,
    }
    return client.post(
        "/api/files/upload",
        headers=headers,
        data={"metadata": json.dumps(metadata)},
        files={"file": ("blob.bin", content, "application/octet-stream")},
    )


@pytest.fixture
def user(client):
    body = signup(client)
    return {"id": body["user"]["id"], "headers": auth_headers(body)}


@pytest.fixture
def other_user(client):
    body = signup(client, username="mallory", password="hunter22")
    return {"id": body["user"]["id"], "headers": auth_headers(body)}
