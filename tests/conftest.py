"""
Shared fixtures: temporary database and storage folder, local and MinIO
backends (the latter on an in-memory client double).
"""

import io
import os
import tempfile
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

# The module-level app reads settings on import; keep its folder out of the repo
os.environ.setdefault("BINARY_FOLDER", tempfile.mkdtemp(prefix="attachvault-test-"))

import pytest
from minio.error import S3Error

from attachvault.config.settings import Settings
from attachvault.core.entities.binary_file import ContentHasher
from attachvault.core.entities.file_descriptor import OwnerRef
from attachvault.core.use_cases.binary_registry import BinaryRegistry
from attachvault.infrastructure.db.database import configure_database, init_db
from attachvault.infrastructure.db.repository import SqlModelStore
from attachvault.infrastructure.security.jwt_tokens import JoseTokenService
from attachvault.infrastructure.security.owner_policy import OwnerPolicy
from attachvault.infrastructure.storage.local_binary import LocalFileBinary
from attachvault.infrastructure.storage.minio_binary import MinIOBinary

SECRET = "test-secret"
BINARY_MAP = {"users": ["images", "avatar"], "*": ["documents"]}


# ── MinIO double ──

class MissingObject(S3Error):
    code = "NoSuchKey"

    def __init__(self, object_name: str):
        Exception.__init__(self, object_name)


class FakeResponse(io.BytesIO):
    def release_conn(self):
        pass


class FakeMinio:
    """Keeps objects of a single bucket in a dict."""

    def __init__(self):
        self.buckets: set[str] = set()
        self.objects: dict[str, bytes] = {}

    def bucket_exists(self, bucket_name):
        return bucket_name in self.buckets

    def make_bucket(self, bucket_name):
        self.buckets.add(bucket_name)

    def put_object(self, bucket_name, object_name, data, length, content_type="application/octet-stream"):
        self.objects[object_name] = data.read(length)

    def stat_object(self, bucket_name, object_name):
        if object_name not in self.objects:
            raise MissingObject(object_name)
        return SimpleNamespace(object_name=object_name, size=len(self.objects[object_name]))

    def get_object(self, bucket_name, object_name):
        if object_name not in self.objects:
            raise MissingObject(object_name)
        return FakeResponse(self.objects[object_name])

    def remove_object(self, bucket_name, object_name):
        self.objects.pop(object_name, None)

    def list_objects(self, bucket_name, prefix="", recursive=False):
        return [SimpleNamespace(object_name=name) for name in sorted(self.objects) if name.startswith(prefix)]

    def copy_object(self, bucket_name, object_name, source):
        self.objects[object_name] = self.objects[source.object_name]

    def presigned_put_object(self, bucket_name, object_name, expires):
        return f"http://minio.test/{bucket_name}/{object_name}?X-Amz-Signature=put"

    def presigned_get_object(self, bucket_name, object_name, expires, response_headers=None):
        return f"http://minio.test/{bucket_name}/{object_name}?X-Amz-Signature=get"

    def client_put(self, url: str, data: bytes):
        """What a client does with a presigned PUT URL."""
        path = urlparse(url).path.lstrip("/")
        _, object_name = path.split("/", 1)
        self.objects[object_name] = data


def token_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


def owner_of(record: dict, model_type: str = "users") -> OwnerRef:
    return OwnerRef(model_type, record["uuid"])


async def read_all(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


# ── Fixtures ──

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        binary_folder=str(tmp_path / "binaries"),
        binary_map=BINARY_MAP,
        binary_single_attributes=["users.avatar"],
        secret_key=SECRET,
    )


@pytest.fixture
def database(settings):
    configure_database(settings.database_url)
    init_db()
    yield settings.database_url


@pytest.fixture
def store(settings, database) -> SqlModelStore:
    return SqlModelStore(settings.binary_single_attributes)


@pytest.fixture
def tokens() -> JoseTokenService:
    return JoseTokenService(SECRET)


@pytest.fixture
def hasher() -> ContentHasher:
    return ContentHasher()


@pytest.fixture
def authorizer() -> OwnerPolicy:
    return OwnerPolicy()


@pytest.fixture
def local_binary(settings, store, tokens) -> LocalFileBinary:
    return LocalFileBinary(settings.binary_folder, model_store=store, tokens=tokens, binary_map=BINARY_MAP)


@pytest.fixture
def fake_minio() -> FakeMinio:
    return FakeMinio()


@pytest.fixture
def minio_binary(store, tokens, fake_minio) -> MinIOBinary:
    return MinIOBinary(client=fake_minio, model_store=store, tokens=tokens, binary_map=BINARY_MAP)


@pytest.fixture
def registry(store, local_binary) -> BinaryRegistry:
    return BinaryRegistry(store, [local_binary])


@pytest.fixture
async def alice(store) -> dict:
    return await store.save("users", {"name": "alice"})


@pytest.fixture
async def bob(store) -> dict:
    return await store.save("users", {"name": "bob"})
