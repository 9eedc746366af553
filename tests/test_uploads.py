import json

from fastapi import status

from conftest import TEST_MAX_UPLOAD, upload


def blobs(settings, user_id: str) -> list:
    user_dir = settings.STORAGE_ROOT / user_id
    return sorted(user_dir.glob("*.bin")) if user_dir.exists() else []


def listed_total(client, headers) -> int:
    return client.get("/api/files", headers=headers).json()["total"]


def test_upload_returns_public_projection(client, settings, user):
    resp = upload(client, user["headers"], content=b"hello world", name="greeting.txt")

    assert resp.status_code == status.HTTP_201_CREATED, resp.text
    body = resp.json()
    assert set(body) == {"id", "original_name", "mime_type", "size_bytes", "created_at"}
    assert body["original_name"] == "greeting.txt"
    assert body["mime_type"] == "text/plain"
    assert body["size_bytes"] == 11

    stored = settings.STORAGE_ROOT / user["id"] / f"{body['id']}.bin"
    assert stored.read_bytes() == b"hello world"


def test_recorded_size_ignores_declared_size(client, settings, user):
    resp = upload(client, user["headers"], content=b"x" * 100, declared=5)

    assert resp.status_code == status.HTTP_201_CREATED
    assert resp.json()["size_bytes"] == 100

    listed = client.get("/api/files", headers=user["headers"]).json()["files"]
    assert listed[0]["size_bytes"] == 100


def test_upload_at_exact_cap_succeeds(client, settings, user):
    resp = upload(client, user["headers"], content=b"a" * TEST_MAX_UPLOAD)

    assert resp.status_code == status.HTTP_201_CREATED
    assert resp.json()["size_bytes"] == TEST_MAX_UPLOAD
    assert len(blobs(settings, user["id"])) == 1


def test_upload_over_cap_leaves_nothing_behind(client, settings, user):
    resp = upload(client, user["headers"], content=b"a" * (TEST_MAX_UPLOAD + 1))

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["detail"] == "File too large"
    assert blobs(settings, user["id"]) == []
    assert listed_total(client, user["headers"]) == 0


def test_upload_without_metadata_is_rejected(client, settings, user):
    resp = client.post(
        "/api/files/upload",
        headers=user["headers"],
        files={"file": ("blob.bin", b"data", "application/octet-stream")},
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert blobs(settings, user["id"]) == []
    assert listed_total(client, user["headers"]) == 0


def test_upload_without_file_is_rejected(client, user):
    resp = client.post(
        "/api/files/upload",
        headers=user["headers"],
        data={"metadata": json.dumps({"original_name": "a.txt", "mime_type": "text/plain"})},
        files={"other": ("x", b"ignored", "text/plain")},
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST


def test_upload_with_invalid_metadata_json(client, settings, user):
    resp = client.post(
        "/api/files/upload",
        headers=user["headers"],
        data={"metadata": "{not json"},
        files={"file": ("blob.bin", b"data", "application/octet-stream")},
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["detail"] == "Invalid metadata"
    assert blobs(settings, user["id"]) == []


def test_upload_with_repeated_metadata_is_rejected(client, settings, user):
    first = json.dumps({"original_name": "a.txt", "mime_type": "text/plain"})
    second = json.dumps({"original_name": "b.txt", "mime_type": "text/plain"})
    resp = client.post(
        "/api/files/upload",
        headers=user["headers"],
        data={"metadata": [first, second]},
        files={"file": ("blob.bin", b"data", "application/octet-stream")},
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["detail"] == "Invalid metadata"
    assert blobs(settings, user["id"]) == []
    assert listed_total(client, user["headers"]) == 0


def test_upload_requires_multipart(client, user):
    resp = client.post("/api/files/upload", headers=user["headers"], json={"original_name": "a"})
    assert resp.status_code == status.HTTP_400_BAD_REQUEST


def test_upload_requires_token(client):
    resp = upload(client, {}, content=b"data")
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED


def test_declared_size_alias_is_accepted(client, user):
    metadata = {"original_name": "alias.txt", "mime_type": "text/plain", "declared_size": 999}
    resp = client.post(
        "/api/files/upload",
        headers=user["headers"],
        data={"metadata": json.dumps(metadata)},
        files={"file": ("blob.bin", b"abc", "application/octet-stream")},
    )

    assert resp.status_code == status.HTTP_201_CREATED
    assert resp.json()["size_bytes"] == 3


def test_encryption_flag_follows_client_algorithm(client, user):
    from filevault.models.file import File

    encrypted = upload(client, user["headers"], name="enc.txt", algo="AES-256-GCM").json()
    plain = upload(client, user["headers"], name="plain.txt", algo="none").json()

    async def flags():
        async with client.app.state.session_maker() as session:
            return (
                (await session.get(File, encrypted["id"])).is_encrypted,
                (await session.get(File, plain["id"])).is_encrypted,
            )

    assert client.portal.call(flags) == (True, False)
