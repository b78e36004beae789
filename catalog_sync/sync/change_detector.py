"""
Change detection for incremental catalog sync.
"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Sequence

from catalog_sync.sync.models import CatalogRecord, ColumnDescriptor, TableDescriptor


class ChangeKind(str, Enum):
    """Outcome of comparing a table against its stored record."""

    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass
class Change:
    """A classified table with its freshly computed fingerprint."""

    table: TableDescriptor
    kind: ChangeKind
    fingerprint: str


@dataclass
class ChangeSet:
    """Tables partitioned by change kind."""

    inserts: list[Change] = field(default_factory=list)
    updates: list[Change] = field(default_factory=list)
    unchanged: list[Change] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.unchanged)

    @property
    def writes(self) -> int:
        return len(self.inserts) + len(self.updates)


def _canonical(column: ColumnDescriptor) -> str:
    return json.dumps(column.to_document(), sort_keys=True, separators=(",", ":"))


class ChangeDetector:
    """Fingerprint tables and classify them against stored catalog records."""

    @staticmethod
    def fingerprint(table: TableDescriptor) -> str:
        """SHA-256 over the columns sorted by name.

        Only column content participates: the table identity and the
        warehouse's column order do not, so a reordered listing never
        looks like a change. Ties on name sort by full canonical form.
        """
        ordered = sorted(table.columns, key=lambda c: (c.name, _canonical(c)))
        payload = json.dumps(
            {"columns": [c.to_document() for c in ordered]},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def classify(
        self,
        table: TableDescriptor,
        existing: Optional[CatalogRecord],
        fingerprint: Optional[str] = None,
    ) -> ChangeKind:
        """NEW without a stored record, CHANGED when fingerprints differ."""
        if existing is None:
            return ChangeKind.NEW
        if fingerprint is None:
            fingerprint = self.fingerprint(table)
        if existing.fingerprint != fingerprint:
            return ChangeKind.CHANGED
        return ChangeKind.UNCHANGED

    def detect(
        self,
        tables: Sequence[TableDescriptor],
        existing: Mapping[tuple[str, str, str], CatalogRecord],
    ) -> ChangeSet:
        """Classify every table against an in-memory lookup of stored records."""
        change_set = ChangeSet()
        for table in tables:
            fingerprint = self.fingerprint(table)
            kind = self.classify(table, existing.get(table.key), fingerprint)
            change = Change(table=table, kind=kind, fingerprint=fingerprint)
            if kind is ChangeKind.NEW:
                change_set.inserts.append(change)
            elif kind is ChangeKind.CHANGED:
                change_set.updates.append(change)
            else:
                change_set.unchanged.append(change)
        return change_set
