"""Canonical merged registry view held by one replica."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .evidence import EvidenceRecord, Fingerprint


def _freeze(registry: Mapping[Fingerprint, EvidenceRecord]) -> Mapping[Fingerprint, EvidenceRecord]:
    return MappingProxyType(dict(registry))


@dataclass(frozen=True, slots=True)
class ReplicaState:
    """Immutable snapshot of the replicated registry.

    Only the merge engine produces new instances; everything else reads.
    """

    registry: Mapping[Fingerprint, EvidenceRecord] = field(
        default_factory=lambda: MappingProxyType({})
    )
    last_merged_sequence: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.registry, MappingProxyType):
            object.__setattr__(self, "registry", _freeze(self.registry))
        if self.last_merged_sequence < 0:
            raise ValueError("last_merged_sequence must be non-negative")

    @classmethod
    def genesis(cls) -> ReplicaState:
        return cls()

    @classmethod
    def from_records(cls, records: Iterable[EvidenceRecord]) -> ReplicaState:
        """Hydrate a snapshot from persisted records (e.g. after a restart)."""

        ordered = sorted(records, key=lambda record: (record.captured_at, record.fingerprint))
        registry: dict[Fingerprint, EvidenceRecord] = {}
        for record in ordered:
            if record.fingerprint in registry:
                raise ValueError(f"Duplicate fingerprint in persisted records: {record.fingerprint}")
            registry[record.fingerprint] = record
        return cls(registry=registry, last_merged_sequence=len(registry))

    @property
    def total_count(self) -> int:
        return len(self.registry)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self.registry

    def get(self, fingerprint: Fingerprint) -> EvidenceRecord | None:
        return self.registry.get(fingerprint)

    def digest(self) -> str:
        """SHA-256 over the canonical JSON of the registry contents.

        Two replicas hold identical registries iff their digests match.
        """

        canonical = json.dumps(
            [self.registry[key].canonical_payload() for key in sorted(self.registry)],
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
