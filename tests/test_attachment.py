import pytest

from attachvault.core.entities.attachment import (
    AppendAttachment,
    AttachmentCollection,
    Cardinality,
    RemoveAttachment,
    SetAttachment,
    SingleAttachment,
    apply_mutation,
    attachment_view,
    references_hash,
    released_hash,
)
from attachvault.core.entities.file_descriptor import FileDescriptor
from attachvault.core.errors import BadRequestError, BinaryNotFoundError, PreconditionFailedError

A = FileDescriptor(size=1, name="a", hash="a" * 32, challenge="1" * 32)
B = FileDescriptor(size=2, name="b", hash="b" * 32, challenge="2" * 32)


def test_single_view():
    empty = attachment_view({}, "avatar", Cardinality.SINGLE)
    assert isinstance(empty, SingleAttachment)
    assert empty.is_empty()

    mutation = empty.upload(A)
    assert mutation == SetAttachment("avatar", A, None)

    record = apply_mutation({}, mutation)
    view = attachment_view(record, "avatar", Cardinality.SINGLE)
    assert not view.is_empty()
    assert view.at(0) == A

    replacing = view.upload(B)
    assert released_hash(replacing) == A.hash
    assert view.delete() == SetAttachment("avatar", None, A.hash)


def test_collection_view_and_optimistic_removal():
    record = apply_mutation({}, AppendAttachment("images", A))
    record = apply_mutation(record, AppendAttachment("images", B))
    view = attachment_view(record, "images", Cardinality.MANY)

    assert isinstance(view, AttachmentCollection)
    assert view.items() == [A, B]

    with pytest.raises(PreconditionFailedError):
        view.remove(0, B.hash)
    with pytest.raises(BinaryNotFoundError):
        view.remove(2, B.hash)

    record = apply_mutation(record, view.remove(0, A.hash))
    assert [d["hash"] for d in record["images"]] == [B.hash]


def test_stale_mutation_is_rejected():
    record = apply_mutation({}, AppendAttachment("images", A))
    stale = RemoveAttachment("images", 0, A.hash)
    record = apply_mutation(record, stale)

    # Index 0 now holds nothing; then something else
    with pytest.raises(BinaryNotFoundError):
        apply_mutation(record, stale)
    record = apply_mutation(record, AppendAttachment("images", B))
    with pytest.raises(PreconditionFailedError):
        apply_mutation(record, stale)


def test_single_set_requires_expected_previous_value():
    record = apply_mutation({}, SetAttachment("avatar", A, None))

    with pytest.raises(PreconditionFailedError):
        apply_mutation(record, SetAttachment("avatar", B, None))
    assert apply_mutation(record, SetAttachment("avatar", B, A.hash))["avatar"]["hash"] == B.hash


def test_view_rejects_wrong_shape():
    with pytest.raises(BadRequestError):
        attachment_view({"images": "nope"}, "images", Cardinality.MANY)
    with pytest.raises(BadRequestError):
        attachment_view({"avatar": ["x"]}, "avatar", Cardinality.SINGLE)


def test_references_hash():
    record = {"avatar": A.to_dict(), "images": [B.to_dict()], "name": "x"}

    assert references_hash(record, A.hash)
    assert references_hash(record, B.hash)
    assert not references_hash(record, "c" * 32)
