"""
Family Data Summary.

Per-entity row counts for one family, used for dashboards and for
confirming an export, import or erasure.
"""

from dataclasses import asdict, dataclass
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncConnection

from family_portability.observability.logging import LogContext
from family_portability.portability.graph import FAMILY_GRAPH, EntityGraph
from family_portability.store.client import PortabilityStore, get_store

logger = structlog.get_logger(__name__)

# Summary field -> entity type it counts
SUMMARY_FIELDS: dict[str, str] = {
    "members": "members",
    "posts": "posts",
    "media": "media_items",
    "events": "events",
    "recipes": "recipes",
    "conversations": "conversations",
    "messages": "messages",
    "vaults": "vaults",
}


@dataclass
class DataSummary:
    """Row counts of a family's data."""

    members: int = 0
    posts: int = 0
    media: int = 0
    events: int = 0
    recipes: int = 0
    conversations: int = 0
    messages: int = 0
    vaults: int = 0

    @property
    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DataSummarizer:
    """Counts a family's rows per entity type with independent queries."""

    def __init__(
        self,
        store: PortabilityStore | None = None,
        graph: EntityGraph | None = None,
    ) -> None:
        self._store = store or get_store()
        self._graph = graph or FAMILY_GRAPH

    async def summarize(self, family_id: str) -> DataSummary:
        counts: dict[str, int] = {}

        with LogContext(operation="summary", family_id=family_id):
            async with self._store.connection() as conn:
                for name, entity_name in SUMMARY_FIELDS.items():
                    counts[name] = await self._count(conn, entity_name, family_id)

            summary = DataSummary(**counts)
            logger.debug("Family summary computed", **counts)
            return summary

    async def _count(self, conn: AsyncConnection, entity_name: str, family_id: str) -> int:
        entity = self._graph.get(entity_name)
        query = (
            select(func.count())
            .select_from(entity.table)
            .where(self._graph.scope_clause(entity_name, family_id))
        )
        return (await conn.scalar(query)) or 0


async def summarize_family(
    family_id: str,
    store: PortabilityStore | None = None,
) -> DataSummary:
    """Summarize a family using a default summarizer."""
    return await DataSummarizer(store=store).summarize(family_id)
