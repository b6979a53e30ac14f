"""
Family Exporter.

Reads a family's complete data graph into a versioned Snapshot:
- Family row and members (identity joined with membership, never credentials)
- Every family-scoped entity in dependency order
- Media variants nested under their media items
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncConnection

from family_portability.observability.logging import LogContext
from family_portability.portability.errors import FamilyNotFoundError
from family_portability.portability.graph import FAMILY_GRAPH, EntityGraph, EntityType
from family_portability.portability.schema import SNAPSHOT_VERSION, Snapshot
from family_portability.store.client import PortabilityStore, get_store
from family_portability.store.tables import family_members, users

logger = structlog.get_logger(__name__)

# Identity columns exported for members; password hashes stay behind
MEMBER_COLUMNS = (
    users.c.id,
    users.c.email,
    users.c.display_name,
    users.c.avatar_url,
    users.c.created_at,
    family_members.c.role,
    family_members.c.joined_at,
)


class FamilyExporter:
    """
    Exports one family's data graph as a Snapshot.

    All reads share one pooled connection. Child collections whose parents
    are empty (messages without conversations, vault items without vaults)
    are not queried.

    Usage:
        ```python
        exporter = FamilyExporter()
        snapshot = await exporter.export(family_id)
        payload = snapshot.to_dict()
        ```
    """

    def __init__(
        self,
        store: PortabilityStore | None = None,
        graph: EntityGraph | None = None,
    ) -> None:
        self._store = store or get_store()
        self._graph = graph or FAMILY_GRAPH

    async def export(self, family_id: str) -> Snapshot:
        """
        Export a family.

        Args:
            family_id: Family to export

        Returns:
            Snapshot of the family's data graph

        Raises:
            FamilyNotFoundError: If the family does not exist
        """
        with LogContext(operation="export", family_id=family_id):
            logger.info("Starting family export")

            async with self._store.connection() as conn:
                family = await self._fetch_family(conn, family_id)
                if family is None:
                    logger.warning("Family not found for export")
                    raise FamilyNotFoundError(family_id)

                collections: dict[str, list[dict[str, Any]]] = {
                    "members": await self._fetch_members(conn, family_id),
                }

                for entity in self._graph.insertion_order():
                    if entity.root or entity.name == "members":
                        continue
                    if entity.parent is not None and not collections.get(entity.parent.target):
                        collections[entity.name] = []
                        continue
                    collections[entity.name] = await self._fetch_rows(conn, entity, family_id)

            variants = collections.pop("media_variants", [])
            collections["media_items"] = self._nest_variants(collections["media_items"], variants)

            snapshot = Snapshot.model_validate({
                "version": SNAPSHOT_VERSION,
                "exported_at": datetime.now(timezone.utc),
                "family": family,
                **collections,
            })

            logger.info("Family export completed", **snapshot.counts())
            return snapshot

    async def _fetch_family(
        self,
        conn: AsyncConnection,
        family_id: str,
    ) -> dict[str, Any] | None:
        table = self._graph.get("families").table
        result = await conn.execute(select(table).where(table.c.id == family_id))
        row = result.mappings().first()
        return dict(row) if row is not None else None

    async def _fetch_members(
        self,
        conn: AsyncConnection,
        family_id: str,
    ) -> list[dict[str, Any]]:
        query = (
            select(*MEMBER_COLUMNS)
            .select_from(family_members.join(users, users.c.id == family_members.c.user_id))
            .where(family_members.c.family_id == family_id)
            .order_by(family_members.c.joined_at, users.c.id)
        )
        return await self._fetch_all(conn, query)

    async def _fetch_rows(
        self,
        conn: AsyncConnection,
        entity: EntityType,
        family_id: str,
    ) -> list[dict[str, Any]]:
        table = entity.table
        query = select(table).where(self._graph.scope_clause(entity.name, family_id))
        if "sort_order" in table.c:
            query = query.order_by(table.c.sort_order, table.c.created_at, table.c.id)
        else:
            query = query.order_by(table.c.created_at, table.c.id)
        return await self._fetch_all(conn, query)

    @staticmethod
    async def _fetch_all(conn: AsyncConnection, query: Select) -> list[dict[str, Any]]:
        result = await conn.execute(query)
        return [dict(row) for row in result.mappings().all()]

    @staticmethod
    def _nest_variants(
        media_items: list[dict[str, Any]],
        variants: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        by_item: dict[str, list[dict[str, Any]]] = {}
        for variant in variants:
            by_item.setdefault(variant["media_item_id"], []).append(variant)
        return [{**item, "variants": by_item.get(item["id"], [])} for item in media_items]


async def export_family(
    family_id: str,
    store: PortabilityStore | None = None,
) -> Snapshot:
    """Export a family using a default exporter."""
    return await FamilyExporter(store=store).export(family_id)
