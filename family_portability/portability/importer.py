"""
Family Importer.

Recreates a Snapshot under fresh identifiers inside one transaction:
- New family, or merge into an existing family
- Members re-created as new identities with new memberships
- Every entity written parents first, all references remapped
- References that leave the snapshot handled by a configurable policy
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from family_portability.config.settings import PortabilitySettings, get_settings
from family_portability.observability.logging import LogContext
from family_portability.portability.errors import ExternalReferenceError, FamilyNotFoundError
from family_portability.portability.graph import (
    FAMILY_GRAPH,
    EntityGraph,
    EntityType,
    Reference,
)
from family_portability.portability.remapper import IdRemapper
from family_portability.portability.schema import Snapshot, SnapshotRecord
from family_portability.store.client import (
    PortabilityStore,
    get_store,
    insert_ignoring_conflicts,
)
from family_portability.store.tables import family_members, users

logger = structlog.get_logger(__name__)

USER_COLUMNS = ("email", "display_name", "avatar_url", "created_at")
MEMBERSHIP_COLUMNS = ("role", "joined_at")


@dataclass
class ExternalReference:
    """A reference to a row that is not part of the imported snapshot."""

    entity: str
    column: str
    value: str
    action: Literal["kept", "nulled"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "column": self.column,
            "value": self.value,
            "action": self.action,
        }


@dataclass
class ImportSummary:
    """Result of a snapshot import."""

    family_id: str
    counts: dict[str, int] = field(default_factory=dict)
    id_mapping: dict[str, str] = field(default_factory=dict)
    external_references: list[ExternalReference] = field(default_factory=list)
    merged: bool = False
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_rows(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "family_id": self.family_id,
            "merged": self.merged,
            "counts": dict(self.counts),
            "id_mapping": dict(self.id_mapping),
            "external_references": [ref.to_dict() for ref in self.external_references],
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class _ImportRun:
    """State of a single import call."""

    conn: AsyncConnection
    snapshot: Snapshot
    remapper: IdRemapper
    known_ids: dict[str, set[str]]
    counts: dict[str, int] = field(default_factory=dict)
    external_references: list[ExternalReference] = field(default_factory=list)


class FamilyImporter:
    """
    Imports Snapshots as new rows with new identifiers.

    The whole import runs in one transaction: either every row of the
    snapshot is written or none is. Importing the same snapshot twice
    produces two independent copies.

    Usage:
        ```python
        importer = FamilyImporter()

        # Import as a new family
        summary = await importer.import_snapshot(snapshot)

        # Merge into an existing family
        summary = await importer.import_snapshot(snapshot, target_family_id=family_id)
        ```
    """

    def __init__(
        self,
        store: PortabilityStore | None = None,
        graph: EntityGraph | None = None,
        settings: PortabilitySettings | None = None,
    ) -> None:
        self._store = store or get_store()
        self._graph = graph or FAMILY_GRAPH
        self._settings = settings or get_settings().portability

    async def import_snapshot(
        self,
        snapshot: Snapshot | dict[str, Any],
        target_family_id: str | None = None,
    ) -> ImportSummary:
        """
        Import a snapshot.

        Args:
            snapshot: Snapshot, or its decoded JSON form
            target_family_id: Existing family to merge into; a new family is created if omitted

        Returns:
            ImportSummary with per-entity counts and the old-to-new id mapping

        Raises:
            UnsupportedSnapshotVersionError: If the snapshot version is not supported
            InvalidSnapshotError: If the snapshot is malformed
            FamilyNotFoundError: If target_family_id does not exist
            ExternalReferenceError: If the reference policy rejects a reference
        """
        snapshot = Snapshot.from_payload(snapshot)
        remapper = IdRemapper()
        known_ids = self._index_snapshot(snapshot)

        with LogContext(operation="import", source_family_id=snapshot.family.id):
            logger.info(
                "Starting snapshot import",
                target_family_id=target_family_id,
                reference_policy=self._settings.external_references,
                **snapshot.counts(),
            )

            try:
                async with self._store.transaction() as conn:
                    run = _ImportRun(
                        conn=conn,
                        snapshot=snapshot,
                        remapper=remapper,
                        known_ids=known_ids,
                    )
                    family_id = await self._import_family(run, target_family_id)
                    await self._import_members(run, family_id)
                    if target_family_id is None:
                        await self._link_family(run, family_id)

                    for entity in self._graph.insertion_order():
                        if entity.root or entity.name == "members":
                            continue
                        if entity.name == "audit_events" and not self._settings.import_audit_events:
                            run.counts[entity.name] = 0
                            continue
                        await self._import_entity(run, entity, family_id)
            except Exception as e:
                logger.error(
                    "Snapshot import failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            summary = ImportSummary(
                family_id=family_id,
                counts=run.counts,
                id_mapping=remapper.mapping,
                external_references=run.external_references,
                merged=target_family_id is not None,
            )

            logger.info(
                "Snapshot import completed",
                family_id=family_id,
                rows=summary.total_rows,
                external_references=len(summary.external_references),
            )
            return summary

    def _index_snapshot(self, snapshot: Snapshot) -> dict[str, set[str]]:
        """Identifiers present in the snapshot, per entity type."""
        return {
            entity.name: {record.id for record in snapshot.records(entity.name)}
            for entity in self._graph
        }

    # =========================================================================
    # Family and Members
    # =========================================================================

    async def _import_family(self, run: _ImportRun, target_family_id: str | None) -> str:
        entity = self._graph.get("families")
        source = run.snapshot.family

        if target_family_id is not None:
            result = await run.conn.execute(
                select(entity.table.c.id).where(entity.table.c.id == target_family_id)
            )
            if result.first() is None:
                raise FamilyNotFoundError(target_family_id)
            run.remapper.bind(source.id, target_family_id)
            run.counts["families"] = 0
            return target_family_id

        values = self._copy_columns(entity, source.values())
        values["id"] = run.remapper.remap(source.id)
        await run.conn.execute(insert(entity.table).values(**values))
        run.counts["families"] = 1
        return values["id"]

    async def _import_members(self, run: _ImportRun, family_id: str) -> None:
        dialect = run.conn.dialect.name

        for member in run.snapshot.members:
            data = member.values()
            user_id = run.remapper.remap(member.id)

            user_values = {"id": user_id}
            user_values.update(
                {column: data[column] for column in USER_COLUMNS if data.get(column) is not None}
            )
            await run.conn.execute(insert_ignoring_conflicts(dialect, users, user_values))

            membership = {"family_id": family_id, "user_id": user_id}
            membership.update(
                {column: data[column] for column in MEMBERSHIP_COLUMNS if data.get(column) is not None}
            )
            await run.conn.execute(insert(family_members).values(**membership))

        run.counts["members"] = len(run.snapshot.members)

    async def _link_family(self, run: _ImportRun, family_id: str) -> None:
        """Fill the family's deferred references now that its members exist."""
        entity = self._graph.get("families")
        data = run.snapshot.family.values()

        values: dict[str, Any] = {}
        for ref in entity.deferred_references:
            resolved = self._resolve_reference(run, entity, ref, data.get(ref.column))
            if resolved is not None:
                values[ref.column] = resolved

        if values:
            await run.conn.execute(
                update(entity.table).where(entity.table.c.id == family_id).values(**values)
            )

    # =========================================================================
    # Family-Scoped Entities
    # =========================================================================

    async def _import_entity(self, run: _ImportRun, entity: EntityType, family_id: str) -> None:
        records = run.snapshot.records(entity.name)
        if entity.self_references:
            records = self._parents_first(entity, records)

        for record in records:
            data = record.values()
            values = self._copy_columns(entity, data)
            values["id"] = run.remapper.remap(record.id)
            if entity.scope_column is not None:
                values[entity.scope_column] = family_id
            for ref in entity.all_references:
                values[ref.column] = self._resolve_reference(run, entity, ref, data.get(ref.column))
            if values.get("subject_id") is not None:
                values["subject_id"] = run.remapper.get(values["subject_id"], values["subject_id"])

            await run.conn.execute(insert(entity.table).values(**values))

        run.counts[entity.name] = len(records)
        logger.debug("Imported entity rows", entity=entity.name, rows=len(records))

    def _copy_columns(self, entity: EntityType, data: dict[str, Any]) -> dict[str, Any]:
        """Data columns of a row; missing values fall back to the column default."""
        values: dict[str, Any] = {}
        for column in entity.columns:
            value = data.get(column)
            if value is None and entity.table.c[column].default is not None:
                continue
            values[column] = value
        return values

    def _resolve_reference(
        self,
        run: _ImportRun,
        entity: EntityType,
        ref: Reference,
        value: Any,
    ) -> str | None:
        if value is None:
            return None
        value = str(value)

        if value in run.known_ids[ref.target]:
            return run.remapper.remap(value)

        policy = self._settings.external_references
        if policy == "reject" or (policy == "nullify" and not ref.nullable):
            raise ExternalReferenceError(entity.name, ref.column, value)

        action: Literal["kept", "nulled"] = "nulled" if policy == "nullify" else "kept"
        run.external_references.append(
            ExternalReference(entity=entity.name, column=ref.column, value=value, action=action)
        )
        logger.warning(
            "Reference outside snapshot",
            entity=entity.name,
            column=ref.column,
            value=value,
            action=action,
        )
        return None if action == "nulled" else value

    @staticmethod
    def _parents_first(
        entity: EntityType,
        records: list[SnapshotRecord],
    ) -> list[SnapshotRecord]:
        """Order self-referencing rows so a referenced row precedes its referrers."""
        by_id = {record.id: record for record in records}
        refs = entity.self_references
        placed: set[str] = set()
        visiting: set[str] = set()
        ordered: list[SnapshotRecord] = []

        for root in records:
            stack: list[tuple[SnapshotRecord, bool]] = [(root, False)]
            while stack:
                record, expanded = stack.pop()
                if record.id in placed:
                    continue
                if expanded:
                    placed.add(record.id)
                    ordered.append(record)
                    continue
                if record.id in visiting:
                    continue
                visiting.add(record.id)
                stack.append((record, True))
                for ref in reversed(refs):
                    parent = by_id.get(getattr(record, ref.column, None))
                    if parent is not None and parent.id not in placed:
                        stack.append((parent, False))

        return ordered


async def import_snapshot(
    snapshot: Snapshot | dict[str, Any],
    target_family_id: str | None = None,
    store: PortabilityStore | None = None,
) -> ImportSummary:
    """Import a snapshot using a default importer."""
    return await FamilyImporter(store=store).import_snapshot(snapshot, target_family_id)
