import pytest

from attachvault.core.entities.binary_file import MemoryBinaryFile
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor
from attachvault.core.errors import BadRequestError, PreconditionFailedError
from attachvault.core.use_cases.binary_registry import BinaryRegistry
from attachvault.core.use_cases.upload_challenge import UploadChallengeUseCase
import attachvault.infrastructure.storage.minio_binary as minio_module

from conftest import owner_of, read_all, token_of

DATA = b"\x89PNG\r\n\x1a\n holiday picture"


@pytest.fixture
def challenge(store, authorizer, minio_binary) -> UploadChallengeUseCase:
    return UploadChallengeUseCase(BinaryRegistry(store, [minio_binary]), store, authorizer)


def hash_keys(fake_minio, hash: str) -> list[str]:
    return sorted(key for key in fake_minio.objects if key.startswith(f"{hash}/"))


async def test_ensure_bucket(minio_binary, fake_minio):
    await minio_binary.ensure_bucket()
    await minio_binary.ensure_bucket()

    assert fake_minio.buckets == {"attachments"}


async def test_store_deduplicates(minio_binary, fake_minio, alice, bob, hasher):
    a, b = owner_of(alice), owner_of(bob)
    expected = hasher.digest_bytes(DATA)

    await minio_binary.store(a, "images", MemoryBinaryFile(DATA, name="a.png", mimetype="image/png"))
    record = await minio_binary.store(b, "images", MemoryBinaryFile(DATA, name="b.png", mimetype="image/png"))

    assert hash_keys(fake_minio, expected.hash) == sorted([
        f"{expected.hash}/data",
        f"{expected.hash}/_{expected.challenge}",
        f"{expected.hash}/{a.marker}",
        f"{expected.hash}/{b.marker}",
    ])
    descriptor = FileDescriptor.from_dict(record["images"][0])
    assert await read_all(await minio_binary.get(descriptor)) == DATA


async def test_last_delete_removes_objects(minio_binary, fake_minio, alice, bob):
    a, b = owner_of(alice), owner_of(bob)
    record = await minio_binary.store(a, "images", MemoryBinaryFile(DATA))
    await minio_binary.store(b, "images", MemoryBinaryFile(DATA))
    hash = record["images"][0]["hash"]

    await minio_binary.delete(a, "images", 0, hash)
    assert await minio_binary.list_usages(hash) == [b.marker]

    await minio_binary.delete(b, "images", 0, hash)
    assert hash_keys(fake_minio, hash) == []


async def test_presigned_upload_is_verified_and_promoted(challenge, minio_binary, fake_minio, alice, hasher):
    hashes = hasher.digest_bytes(DATA)
    descriptor = FileDescriptor(size=hashes.size, name="p.png", hash=hashes.hash, challenge=hashes.challenge)
    context = RequestContext(user_id=alice["uuid"])

    result = await challenge.announce(context, owner_of(alice), "images", descriptor)

    assert not result.done
    assert result.url.startswith(f"http://minio.test/attachments/_staging/{hashes.hash}/{hashes.challenge}?")
    assert result.finalize_url.startswith(f"http://localhost/binary/upload/finalize/{hashes.hash}?token=")

    with pytest.raises(PreconditionFailedError):
        await challenge.finalize(minio_binary, hashes.hash, token_of(result.finalize_url))

    fake_minio.client_put(result.url, DATA)
    await challenge.finalize(minio_binary, hashes.hash, token_of(result.finalize_url))

    assert fake_minio.objects[f"{hashes.hash}/data"] == DATA
    assert not any(key.startswith("_staging/") for key in fake_minio.objects)
    assert await minio_binary.challenge_verified(hashes.hash, hashes.challenge)

    again = await challenge.announce(context, owner_of(alice), "images", descriptor)
    assert again.done


async def test_presigned_upload_with_wrong_bytes(challenge, minio_binary, fake_minio, alice, hasher):
    hashes = hasher.digest_bytes(DATA)
    descriptor = FileDescriptor(hash=hashes.hash, challenge=hashes.challenge)
    result = await challenge.announce(RequestContext(user_id=alice["uuid"]), owner_of(alice), "images", descriptor)

    fake_minio.client_put(result.url, b"not the announced picture")
    with pytest.raises(BadRequestError):
        await challenge.finalize(minio_binary, hashes.hash, token_of(result.finalize_url))

    assert f"{hashes.hash}/data" not in fake_minio.objects
    assert not any(key.startswith("_staging/") for key in fake_minio.objects)


async def test_downloads_redirect_to_presigned_url(minio_binary, alice):
    record = await minio_binary.store(owner_of(alice), "images", MemoryBinaryFile(DATA, name="a.png"))
    descriptor = FileDescriptor.from_dict(record["images"][0])

    location = await minio_binary.get_redirect_url(RequestContext(user_id=alice["uuid"]), descriptor)

    assert minio_binary.redirect_downloads
    assert location.startswith(f"http://minio.test/attachments/{descriptor.hash}/data?")


async def test_large_content_spools_to_disk(minio_binary, fake_minio, alice, hasher, monkeypatch):
    monkeypatch.setattr(minio_module, "SPOOL_MAX_MEMORY", 16)
    expected = hasher.digest_bytes(DATA)

    record = await minio_binary.store(owner_of(alice), "images", MemoryBinaryFile(DATA, name="a.png", mimetype="image/png"))

    assert len(DATA) > 16
    assert fake_minio.objects[f"{expected.hash}/data"] == DATA
    descriptor = FileDescriptor.from_dict(record["images"][0])
    assert await read_all(await minio_binary.get(descriptor)) == DATA


async def test_usage_count_of_malformed_hash(minio_binary):
    assert await minio_binary.get_usage_count("../etc") == 0
    assert await minio_binary.list_usages("not-a-hash") == []
