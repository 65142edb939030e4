import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from attachvault.api.main import create_app
from attachvault.core.entities.file_descriptor import FileDescriptor

from conftest import FakeMinio, token_of

DATA = b"invoice #42, total 1337 EUR"


@pytest.fixture
def app(settings, database):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def container(app):
    return app.state.container


@pytest.fixture
def alice(container) -> dict:
    return asyncio.run(container.store.save("users", {"name": "alice"}))


@pytest.fixture
def bob(container) -> dict:
    return asyncio.run(container.store.save("users", {"name": "bob"}))


def auth(container, user: dict) -> dict:
    return {"Authorization": f"Bearer {container.tokens.create_session_token(user['uuid'])}"}


def announce_body(container, data: bytes, name: str = "invoice.txt") -> dict:
    hashes = container.binary.hasher.digest_bytes(data)
    return {"hash": hashes.hash, "challenge": hashes.challenge, "size": hashes.size,
            "name": name, "mimetype": "text/plain"}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["binary_backend"] == "local"
    assert response.json()["database"] == "SQLite"


def test_announce_upload_and_download(client, container, alice):
    headers = auth(container, alice)
    body = announce_body(container, DATA)

    response = client.put(f"/binary/users/{alice['uuid']}/images", json=body, headers=headers)
    assert response.status_code == 200
    challenge = response.json()
    assert challenge["done"] is False
    assert challenge["method"] == "PUT"
    assert "finalize_url" not in challenge

    upload_path = challenge["url"].replace("http://testserver", "")
    assert client.put(upload_path, content=DATA).status_code == 204

    response = client.get(f"/binary/users/{alice['uuid']}/images/0", headers=headers)
    assert response.status_code == 200
    assert response.content == DATA
    assert response.headers["content-type"].startswith("text/plain")
    assert 'filename="invoice.txt"' in response.headers["content-disposition"]

    again = client.put(f"/binary/users/{alice['uuid']}/images", json=body, headers=headers)
    assert again.json() == {"done": True, "md5": challenge["md5"]}


def test_caller_must_be_allowed(client, container, alice, bob):
    body = announce_body(container, DATA)
    path = f"/binary/users/{alice['uuid']}/images"

    assert client.put(path, json=body).status_code == 403
    assert client.put(path, json=body, headers=auth(container, bob)).status_code == 403
    assert client.put(path, json=body, headers={"Authorization": "Bearer nonsense"}).status_code == 403


def test_unknown_targets(client, container, alice):
    headers = auth(container, alice)
    body = announce_body(container, DATA)

    assert client.put(f"/binary/users/{alice['uuid']}/secrets", json=body, headers=headers).status_code == 404
    assert client.put("/binary/users/no-such-user/images", json=body, headers=headers).status_code == 404
    assert client.get(f"/binary/users/{alice['uuid']}/images/0", headers=headers).status_code == 404


def test_raw_upload_checks(client, container, alice):
    body = announce_body(container, DATA)
    descriptor = FileDescriptor(hash=body["hash"], challenge=body["challenge"])
    token = container.binary.sign_ticket(descriptor)

    response = client.put(f"/binary/upload/data/{body['hash']}", params={"token": token}, content=DATA)
    assert response.status_code == 412

    client.put(f"/binary/users/{alice['uuid']}/images", json=body, headers=auth(container, alice))
    response = client.put(f"/binary/upload/data/{body['hash']}", params={"token": token}, content=b"tampered")
    assert response.status_code == 400
    response = client.put(f"/binary/upload/data/{body['hash']}", params={"token": "forged"}, content=DATA)
    assert response.status_code == 403
    response = client.put(f"/binary/upload/data/{body['hash']}", params={"token": token}, content=DATA)
    assert response.status_code == 204


def test_multipart_upload_update_and_delete(client, container, alice):
    headers = auth(container, alice)
    base = f"/binary/users/{alice['uuid']}/images"

    response = client.post(
        base,
        files={"file": ("invoice.txt", DATA, "text/plain")},
        data={"metadata": json.dumps({"year": 2024})},
        headers=headers,
    )
    assert response.status_code == 200
    item = response.json()["images"][0]
    assert item["name"] == "invoice.txt"
    assert item["metadata"] == {"year": 2024}
    assert item["size"] == len(DATA)

    response = client.put(f"{base}/0/{item['hash']}", json={"year": 2025}, headers=headers)
    assert response.status_code == 200
    assert response.json()["images"][0]["metadata"] == {"year": 2025}

    assert client.delete(f"{base}/0/{'0' * 32}", headers=headers).status_code == 412
    response = client.delete(f"{base}/0/{item['hash']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["images"] == []
    assert asyncio.run(container.binary.get_usage_count(item["hash"])) == 0


def test_bad_metadata_is_rejected(client, container, alice):
    response = client.post(
        f"/binary/users/{alice['uuid']}/images",
        files={"file": ("invoice.txt", DATA, "text/plain")},
        data={"metadata": "[1, 2]"},
        headers=auth(container, alice),
    )

    assert response.status_code == 400


def test_download_url_info(client, container, alice):
    headers = auth(container, alice)
    base = f"/binary/users/{alice['uuid']}/images"
    client.post(base, files={"file": ("invoice.txt", DATA, "text/plain")}, headers=headers)

    response = client.get(f"{base}/0/url", headers=headers)

    assert response.status_code == 200
    location = response.json()["Location"]
    assert "/binary/download/data/" in location
    download = client.get(f"/binary/download/data/{location.split('/')[-1].split('?')[0]}",
                          params={"token": token_of(location)})
    assert download.content == DATA


def test_restricted_routes(settings, database):
    restricted = settings.model_copy(update={
        "binary_restrict_get": True,
        "binary_restrict_create": True,
        "binary_restrict_delete": True,
    })
    app = create_app(restricted)
    alice = asyncio.run(app.state.container.store.save("users", {"name": "alice"}))
    headers = auth(app.state.container, alice)
    base = f"/binary/users/{alice['uuid']}/images"

    with TestClient(app) as client:
        assert client.get(f"{base}/0", headers=headers).status_code in (404, 405)
        assert client.post(base, files={"file": ("a.txt", DATA)}, headers=headers).status_code in (404, 405)
        assert client.delete(f"{base}/0/{'0' * 32}", headers=headers).status_code in (404, 405)


def test_minio_downloads_redirect(settings, database):
    app = create_app(settings.model_copy(update={"binary_backend": "minio"}), minio_client=FakeMinio())
    container = app.state.container
    alice = asyncio.run(container.store.save("users", {"name": "alice"}))
    headers = auth(container, alice)
    base = f"/binary/users/{alice['uuid']}/images"

    with TestClient(app) as client:
        client.post(base, files={"file": ("a.txt", DATA, "text/plain")}, headers=headers)
        response = client.get(f"{base}/0", headers=headers, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("http://minio.test/attachments/")
