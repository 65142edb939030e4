import hashlib

import pytest

from attachvault.core.entities.binary_file import (
    DEFAULT_CHALLENGE_PREFIX,
    ContentHasher,
    LocalBinaryFile,
    MemoryBinaryFile,
    is_valid_digest,
)
from attachvault.core.entities.file_descriptor import FileDescriptor, check_metadata_size
from attachvault.core.errors import BadRequestError

from conftest import read_all


def test_hash_is_md5_and_challenge_is_prefixed_md5(hasher):
    hashes = hasher.digest_bytes(b"hello")

    assert hashes.hash == "5d41402abc4b2a76b9719d911017c592"
    assert hashes.challenge == hashlib.md5(DEFAULT_CHALLENGE_PREFIX + b"hello").hexdigest()
    assert hashes.size == 5


def test_challenge_depends_on_prefix():
    a = ContentHasher(b"one").digest_bytes(b"payload")
    b = ContentHasher(b"two").digest_bytes(b"payload")

    assert a.hash == b.hash
    assert a.challenge != b.challenge


async def test_stream_digest_matches_whole_digest(hasher):
    data = bytes(range(256)) * 1000
    file = MemoryBinaryFile(data)

    descriptor = await file.get_hashes(hasher)

    assert descriptor.hash == hasher.digest_bytes(data).hash
    assert descriptor.challenge == hasher.digest_bytes(data).challenge
    assert descriptor.size == len(data)
    assert await read_all(file.chunks()) == data


async def test_local_file_descriptor(tmp_path, hasher):
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4 fake")

    file = LocalBinaryFile(path, metadata={"pages": 1})
    descriptor = await file.get_hashes(hasher)

    assert descriptor.name == "report.pdf"
    assert descriptor.mimetype == "application/pdf"
    assert descriptor.size == len(b"%PDF-1.4 fake")
    assert descriptor.metadata == {"pages": 1}
    assert descriptor.hash == hashlib.md5(b"%PDF-1.4 fake").hexdigest()


def test_hashes_cannot_change_once_set():
    descriptor = FileDescriptor().with_hashes("a" * 32, "b" * 32)

    assert descriptor.with_hashes("a" * 32, "b" * 32) == descriptor
    with pytest.raises(BadRequestError):
        descriptor.with_hashes("c" * 32, "b" * 32)
    with pytest.raises(BadRequestError):
        descriptor.with_hashes("a" * 32, "c" * 32)


def test_metadata_size_bound():
    check_metadata_size({"note": "x" * 100}, 4096)
    with pytest.raises(BadRequestError):
        check_metadata_size({"note": "x" * 5000}, 4096)


def test_descriptor_from_dict_rejects_bad_shapes():
    with pytest.raises(BadRequestError):
        FileDescriptor.from_dict({"size": -1})
    with pytest.raises(BadRequestError):
        FileDescriptor.from_dict({"size": "12"})
    with pytest.raises(BadRequestError):
        FileDescriptor.from_dict({"metadata": ["not", "a", "dict"]})

    stored = FileDescriptor(size=3, name="a.txt", mimetype="text/plain", hash="a" * 32, challenge="b" * 32)
    assert FileDescriptor.from_dict(stored.to_dict()) == stored


def test_digest_format():
    assert is_valid_digest("5d41402abc4b2a76b9719d911017c592")
    assert not is_valid_digest("5D41402ABC4B2A76B9719D911017C592")
    assert not is_valid_digest("../../etc/passwd")
    assert not is_valid_digest(None)
