"""Person records and the in-memory store the matcher scans.

Only the fields needed for identity resolution are kept here. Writes bump a
monotonically increasing version so snapshot caches can tell when a pool
is stale.
"""

from __future__ import annotations

import secrets
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from kumbhid.exceptions import InvalidStatusError, RecordNotFoundError

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from kumbhid.biometrics.types import FaceDescriptor, Gender

_REGISTRATION_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class RecordKind(StrEnum):
    DEVOTEE = "devotee"
    LOST_PERSON = "lost_person"


class PersonStatus(StrEnum):
    ACTIVE = "active"
    MISSING = "missing"
    FOUND = "found"
    REUNITED = "reunited"


LOST_PERSON_STATUSES = frozenset({PersonStatus.MISSING, PersonStatus.FOUND, PersonStatus.REUNITED})


def generate_registration_number(now: datetime | None = None) -> str:
    """Return a devotee registration number such as ``KM2026-7QX2D9``."""
    year = (now or datetime.now(UTC)).year
    suffix = "".join(secrets.choice(_REGISTRATION_ALPHABET) for _ in range(6))
    return f"KM{year}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class PersonRecord:
    """A stored person. Records without a descriptor never enter a match pool."""

    id: str
    kind: RecordKind
    name: str
    status: PersonStatus
    descriptor: FaceDescriptor | None = None
    age: int | None = None
    gender: Gender | None = None
    contact: dict[str, str] = field(default_factory=dict)
    registration_number: str | None = None
    photo_url: str | None = None
    last_seen_location: str | None = None
    current_location: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


class InMemoryPersonRepository:
    """Thread-safe record store handing out immutable snapshots."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, PersonRecord] = {}
        self._version = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def add_devotee(
        self,
        name: str,
        descriptor: FaceDescriptor | None = None,
        age: int | None = None,
        gender: Gender | None = None,
        contact: dict[str, str] | None = None,
        photo_url: str | None = None,
    ) -> PersonRecord:
        record = PersonRecord(
            id=uuid.uuid4().hex,
            kind=RecordKind.DEVOTEE,
            name=name,
            status=PersonStatus.ACTIVE,
            descriptor=descriptor,
            age=age,
            gender=gender,
            contact=dict(contact or {}),
            registration_number=generate_registration_number(),
            photo_url=photo_url,
        )
        return self._insert(record)

    def add_lost_person(
        self,
        descriptor: FaceDescriptor,
        status: PersonStatus = PersonStatus.MISSING,
        name: str = "Unknown",
        age: int | None = None,
        gender: Gender | None = None,
        contact: dict[str, str] | None = None,
        photo_url: str | None = None,
        last_seen_location: str | None = None,
        current_location: str | None = None,
    ) -> PersonRecord:
        if status not in LOST_PERSON_STATUSES:
            raise InvalidStatusError(f"Lost-and-found reports cannot have status '{status}'")
        record = PersonRecord(
            id=uuid.uuid4().hex,
            kind=RecordKind.LOST_PERSON,
            name=name,
            status=status,
            descriptor=descriptor,
            age=age,
            gender=gender,
            contact=dict(contact or {}),
            photo_url=photo_url,
            last_seen_location=last_seen_location,
            current_location=current_location,
        )
        return self._insert(record)

    def get(self, record_id: str) -> PersonRecord:
        with self._lock:
            try:
                return self._records[record_id]
            except KeyError:
                raise RecordNotFoundError(f"Unknown record: {record_id}") from None

    def update_status(self, record_id: str, status: PersonStatus) -> PersonRecord:
        """Move a lost-and-found record to another lifecycle status."""
        with self._lock:
            try:
                current = self._records[record_id]
            except KeyError:
                raise RecordNotFoundError(f"Unknown record: {record_id}") from None
            if current.kind is not RecordKind.LOST_PERSON or status not in LOST_PERSON_STATUSES:
                raise InvalidStatusError(f"Cannot move {current.kind} record to status '{status}'")
            updated = replace(current, status=status, updated_at=_utcnow())
            self._records[record_id] = updated
            self._version += 1
            return updated

    def list_recent(
        self,
        kind: RecordKind,
        status: PersonStatus | None = None,
        limit: int = 20,
    ) -> list[PersonRecord]:
        """Newest records first."""
        with self._lock:
            records = [r for r in self._records.values() if r.kind is kind and (status is None or r.status is status)]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    def snapshot(
        self,
        kind: RecordKind,
        statuses: Collection[PersonStatus] | None = None,
    ) -> tuple[int, tuple[PersonRecord, ...]]:
        """Return the current version and every matchable record, in insertion order."""
        with self._lock:
            records = tuple(
                r
                for r in self._records.values()
                if r.kind is kind and r.descriptor is not None and (statuses is None or r.status in statuses)
            )
            return self._version, records

    def extend(self, records: Sequence[PersonRecord]) -> None:
        """Bulk-load existing records (e.g. restored from the primary store)."""
        with self._lock:
            for record in records:
                self._records[record.id] = record
            self._version += 1

    def _insert(self, record: PersonRecord) -> PersonRecord:
        with self._lock:
            self._records[record.id] = record
            self._version += 1
        return record
