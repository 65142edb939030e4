"""
Entity: Attachment

An attribute holding attachments is either single-valued or an ordered
collection. Views over the stored value never mutate anything: each
operation returns a pending mutation that the caller applies through the
model store.
"""

from dataclasses import dataclass
from enum import Enum

from attachvault.core.entities.file_descriptor import FileDescriptor
from attachvault.core.errors import BadRequestError, BinaryNotFoundError, PreconditionFailedError


class Cardinality(str, Enum):
    SINGLE = "SINGLE"
    MANY = "MANY"


# ── Pending mutations ──

@dataclass(frozen=True)
class SetAttachment:
    """Set (or clear, with value=None) a single-valued attribute."""
    attribute: str
    value: FileDescriptor | None
    expected_hash: str | None = None


@dataclass(frozen=True)
class AppendAttachment:
    attribute: str
    value: FileDescriptor


@dataclass(frozen=True)
class ReplaceAttachment:
    attribute: str
    index: int
    value: FileDescriptor
    expected_hash: str


@dataclass(frozen=True)
class RemoveAttachment:
    attribute: str
    index: int
    expected_hash: str


AttachmentMutation = SetAttachment | AppendAttachment | ReplaceAttachment | RemoveAttachment


# ── Views ──

@dataclass(frozen=True)
class SingleAttachment:
    """One attachment per attribute."""
    attribute: str
    value: FileDescriptor | None

    def is_empty(self) -> bool:
        return self.value is None

    def items(self) -> list[FileDescriptor]:
        return [] if self.value is None else [self.value]

    def at(self, index: int = 0) -> FileDescriptor:
        if index != 0 or self.value is None:
            raise BinaryNotFoundError(f"No attachment on {self.attribute}")
        return self.value

    def add(self, descriptor: FileDescriptor) -> SetAttachment:
        return SetAttachment(self.attribute, descriptor, self.value.hash if self.value else None)

    def upload(self, descriptor: FileDescriptor) -> SetAttachment:
        return self.add(descriptor)

    def replace(self, index: int, descriptor: FileDescriptor, expected_hash: str) -> SetAttachment:
        self._check(index, expected_hash)
        return SetAttachment(self.attribute, descriptor, expected_hash)

    def delete(self, index: int = 0, expected_hash: str | None = None) -> SetAttachment:
        current = self.at(index)
        if expected_hash is not None:
            self._check(index, expected_hash)
        return SetAttachment(self.attribute, None, current.hash)

    def _check(self, index: int, expected_hash: str) -> None:
        if self.at(index).hash != expected_hash:
            raise PreconditionFailedError(f"Attachment on {self.attribute} does not match {expected_hash}")


@dataclass(frozen=True)
class AttachmentCollection:
    """Ordered attachments addressed by position."""
    attribute: str
    values: tuple[FileDescriptor, ...] = ()

    def is_empty(self) -> bool:
        return not self.values

    def items(self) -> list[FileDescriptor]:
        return list(self.values)

    def at(self, index: int) -> FileDescriptor:
        if index < 0 or index >= len(self.values):
            raise BinaryNotFoundError(f"No attachment at {self.attribute}[{index}]")
        return self.values[index]

    def add(self, descriptor: FileDescriptor) -> AppendAttachment:
        return AppendAttachment(self.attribute, descriptor)

    def append(self, descriptor: FileDescriptor) -> AppendAttachment:
        return self.add(descriptor)

    def replace(self, index: int, descriptor: FileDescriptor, expected_hash: str) -> ReplaceAttachment:
        self._check(index, expected_hash)
        return ReplaceAttachment(self.attribute, index, descriptor, expected_hash)

    def delete(self, index: int, expected_hash: str | None = None) -> RemoveAttachment:
        current = self.at(index)
        if expected_hash is None:
            expected_hash = current.hash
        self._check(index, expected_hash)
        return RemoveAttachment(self.attribute, index, expected_hash)

    def remove(self, index: int, expected_hash: str) -> RemoveAttachment:
        return self.delete(index, expected_hash)

    def _check(self, index: int, expected_hash: str) -> None:
        if self.at(index).hash != expected_hash:
            raise PreconditionFailedError(f"Attachment {self.attribute}[{index}] does not match {expected_hash}")


BinaryAttribute = SingleAttachment | AttachmentCollection


def attachment_view(record: dict, attribute: str, cardinality: Cardinality) -> BinaryAttribute:
    """Read an attribute from an owner record as the view matching its cardinality."""
    raw = record.get(attribute)
    if cardinality == Cardinality.SINGLE:
        if raw is not None and not isinstance(raw, dict):
            raise BadRequestError(f"Attribute {attribute} does not hold an attachment")
        return SingleAttachment(attribute, FileDescriptor.from_dict(raw) if raw else None)
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise BadRequestError(f"Attribute {attribute} does not hold an attachment collection")
    return AttachmentCollection(attribute, tuple(FileDescriptor.from_dict(v) for v in raw))


def apply_mutation(record: dict, mutation: AttachmentMutation) -> dict:
    """
    Return a copy of the record with the mutation applied.

    The stored value is checked again against the expected hash so that a
    mutation computed from a stale read is rejected instead of touching the
    wrong item.
    """
    data = dict(record)
    attribute = mutation.attribute

    if isinstance(mutation, SetAttachment):
        current = data.get(attribute)
        current_hash = current.get("hash") if isinstance(current, dict) else None
        if current_hash != mutation.expected_hash:
            raise PreconditionFailedError(f"Attachment on {attribute} changed meanwhile")
        data[attribute] = mutation.value.to_dict() if mutation.value is not None else None
        return data

    values = list(data.get(attribute) or [])
    if isinstance(mutation, AppendAttachment):
        values.append(mutation.value.to_dict())
    else:
        if mutation.index < 0 or mutation.index >= len(values):
            raise BinaryNotFoundError(f"No attachment at {attribute}[{mutation.index}]")
        if values[mutation.index].get("hash") != mutation.expected_hash:
            raise PreconditionFailedError(f"Attachment {attribute}[{mutation.index}] changed meanwhile")
        if isinstance(mutation, ReplaceAttachment):
            values[mutation.index] = mutation.value.to_dict()
        else:
            del values[mutation.index]
    data[attribute] = values
    return data


def mutation_hash(mutation: AttachmentMutation) -> str | None:
    """Hash of the content a mutation binds, if any."""
    value = getattr(mutation, "value", None)
    return value.hash if value is not None else None


def released_hash(mutation: AttachmentMutation) -> str | None:
    """Hash whose binding the mutation drops, if it differs from the new one."""
    expected = getattr(mutation, "expected_hash", None)
    if expected is None or expected == mutation_hash(mutation):
        return None
    return expected


def references_hash(record: dict, hash: str) -> bool:
    """True if any attachment of the record points at this content hash."""
    for value in record.values():
        if isinstance(value, dict) and value.get("hash") == hash:
            return True
        if isinstance(value, list) and any(isinstance(v, dict) and v.get("hash") == hash for v in value):
            return True
    return False
