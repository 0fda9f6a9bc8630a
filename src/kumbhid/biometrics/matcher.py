"""Face descriptor matching.

One brute-force Euclidean scan serves both devotee re-identification and
lost-and-found reunification. Results are filtered by a distance threshold,
ordered closest first and truncated to top-K. Candidates whose descriptor
length differs from the query's sit at infinite distance and never match.

Equal distances keep candidate scan order (the repository's insertion
order), since the sort is stable.

The scan is O(N*D) per query. An approximate nearest-neighbour index could
replace :class:`CandidatePool` behind the same ``search`` signature once
pools grow past a few tens of thousands of records.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from kumbhid.exceptions import InvalidDescriptorError, InvalidQueryError
from kumbhid.records.repository import PersonStatus, RecordKind

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from numpy.typing import NDArray

    from kumbhid.records.cache import SnapshotCache
    from kumbhid.records.repository import InMemoryPersonRepository, PersonRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_DISTANCE: float = 0.6
REGISTRATION_TOP_K: int = 10
LOST_FOUND_TOP_K: int = 5


@dataclass(frozen=True)
class MatchResult:
    record: PersonRecord
    distance: float
    similarity: float


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """L2 distance; descriptors of unequal length are infinitely far apart."""
    if len(a) != len(b):
        return math.inf
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sqrt(np.dot(diff, diff)))


def validate_descriptor(descriptor: Sequence[float], expected_length: int | None = None) -> NDArray[np.float64]:
    """Return ``descriptor`` as a float vector or raise InvalidDescriptorError."""
    if len(descriptor) == 0:
        raise InvalidDescriptorError("Descriptor is empty")
    if expected_length is not None and len(descriptor) != expected_length:
        raise InvalidDescriptorError(
            f"Descriptor must have {expected_length} values, got {len(descriptor)}",
            details={"expected": expected_length, "actual": len(descriptor)},
        )
    try:
        vector = np.asarray(descriptor, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidDescriptorError(f"Descriptor values must be numeric: {exc}") from exc
    if vector.ndim != 1 or not np.all(np.isfinite(vector)):
        raise InvalidDescriptorError("Descriptor must be a flat vector of finite numbers")
    return vector


class CandidatePool:
    """An immutable, matrix-backed view of matchable records."""

    def __init__(self, records: Sequence[PersonRecord], dimension: int) -> None:
        self._records = tuple(r for r in records if r.descriptor is not None)
        self._dimension = dimension
        rows = [i for i, r in enumerate(self._records) if len(r.descriptor) == dimension]  # type: ignore[arg-type]
        self._rows = np.asarray(rows, dtype=np.intp)
        if rows:
            self._matrix = np.asarray([self._records[i].descriptor for i in rows], dtype=np.float64)
        else:
            self._matrix = np.empty((0, dimension), dtype=np.float64)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def dimension(self) -> int:
        return self._dimension

    def distances(self, query: NDArray[np.float64]) -> NDArray[np.float64]:
        """Distance from ``query`` to every record, in scan order."""
        result = np.full(len(self._records), np.inf, dtype=np.float64)
        if query.shape[0] != self._dimension or not len(self._rows):
            return result
        diff = self._matrix - query
        result[self._rows] = np.sqrt(np.einsum("ij,ij->i", diff, diff))
        return result

    def search(self, query: NDArray[np.float64], max_distance: float, top_k: int) -> list[MatchResult]:
        if not self._records:
            return []
        distances = self.distances(query)
        order = np.argsort(distances, kind="stable")
        matches: list[MatchResult] = []
        for index in order:
            distance = float(distances[index])
            if not distance <= max_distance:
                break
            matches.append(
                MatchResult(
                    record=self._records[index],
                    distance=distance,
                    similarity=max(0.0, 1.0 - distance),
                )
            )
            if len(matches) == top_k:
                break
        return matches


def find_matches(
    query: Sequence[float],
    candidates: Sequence[PersonRecord],
    max_distance: float = DEFAULT_MAX_DISTANCE,
    top_k: int = REGISTRATION_TOP_K,
    expected_length: int | None = None,
) -> list[MatchResult]:
    """Rank ``candidates`` against ``query``, closest first.

    Raises:
        InvalidDescriptorError: If the query descriptor is malformed.
        InvalidQueryError: If ``max_distance`` or ``top_k`` is out of range.
    """
    _check_limits(max_distance, top_k)
    vector = validate_descriptor(query, expected_length)
    return CandidatePool(candidates, len(vector)).search(vector, max_distance, top_k)


def _check_limits(max_distance: float, top_k: int) -> None:
    if not math.isfinite(max_distance) or max_distance < 0:
        raise InvalidQueryError(f"max_distance must be a non-negative number, got {max_distance}")
    if top_k < 1:
        raise InvalidQueryError(f"top_k must be at least 1, got {top_k}")


class Matcher:
    """Repository-backed matcher shared by registration and lost-and-found search."""

    def __init__(
        self,
        repository: InMemoryPersonRepository,
        cache: SnapshotCache[CandidatePool],
        dimension: int = 128,
        max_distance: float = DEFAULT_MAX_DISTANCE,
        registration_top_k: int = REGISTRATION_TOP_K,
        lost_found_top_k: int = LOST_FOUND_TOP_K,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._dimension = dimension
        self._max_distance = max_distance
        self._registration_top_k = registration_top_k
        self._lost_found_top_k = lost_found_top_k

    def search_devotees(self, descriptor: Sequence[float], max_distance: float | None = None) -> list[MatchResult]:
        """Top registered devotees for a descriptor."""
        return self._search(
            descriptor,
            RecordKind.DEVOTEE,
            None,
            self._max_distance if max_distance is None else max_distance,
            self._registration_top_k,
        )

    def search_lost_persons(
        self,
        descriptor: Sequence[float],
        max_distance: float | None = None,
        status_filter: PersonStatus | None = None,
    ) -> list[MatchResult]:
        """Top lost-and-found reports; without a filter, reunited cases are skipped."""
        if status_filter is None:
            statuses: frozenset[PersonStatus] = frozenset({PersonStatus.MISSING, PersonStatus.FOUND})
        else:
            statuses = frozenset({status_filter})
        return self._search(
            descriptor,
            RecordKind.LOST_PERSON,
            statuses,
            self._max_distance if max_distance is None else max_distance,
            self._lost_found_top_k,
        )

    def _search(
        self,
        descriptor: Sequence[float],
        kind: RecordKind,
        statuses: Collection[PersonStatus] | None,
        max_distance: float,
        top_k: int,
    ) -> list[MatchResult]:
        _check_limits(max_distance, top_k)
        query = validate_descriptor(descriptor, self._dimension)
        pool = self._pool(kind, statuses)
        matches = pool.search(query, max_distance, top_k)
        logger.info(
            "Matched %s query against %d candidates: %d within %.3f",
            kind,
            len(pool),
            len(matches),
            max_distance,
        )
        return matches

    def _pool(self, kind: RecordKind, statuses: Collection[PersonStatus] | None) -> CandidatePool:
        key = (kind, tuple(sorted(statuses)) if statuses is not None else None)
        self._cache.evict_expired()

        def build() -> tuple[int, CandidatePool]:
            version, records = self._repository.snapshot(kind, statuses)
            return version, CandidatePool(records, self._dimension)

        return self._cache.get(key, self._repository.version, build)
