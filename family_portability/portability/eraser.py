"""
Family Eraser.

Permanently deletes a family's data graph (right to erasure):
- Children deleted before the rows they reference
- Child tables scoped through their owning parent
- All deletes commit together or not at all
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete

from family_portability.observability.logging import LogContext
from family_portability.portability.graph import FAMILY_GRAPH, EntityGraph
from family_portability.store.client import PortabilityStore, get_store

logger = structlog.get_logger(__name__)


@dataclass
class DeletionSummary:
    """Result of a family erasure."""

    family_id: str
    counts: dict[str, int] = field(default_factory=dict)
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_rows(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "family_id": self.family_id,
            "counts": dict(self.counts),
            "completed_at": self.completed_at.isoformat(),
        }


class FamilyEraser:
    """
    Hard-deletes every row belonging to a family.

    Shared user identities are kept; the family's memberships are removed.
    Erasing a family that does not exist succeeds with zero counts.
    """

    def __init__(
        self,
        store: PortabilityStore | None = None,
        graph: EntityGraph | None = None,
    ) -> None:
        self._store = store or get_store()
        self._graph = graph or FAMILY_GRAPH

    async def erase(self, family_id: str) -> DeletionSummary:
        """
        Erase a family.

        Args:
            family_id: Family to erase

        Returns:
            DeletionSummary with the number of rows removed per entity
        """
        counts: dict[str, int] = {}

        with LogContext(operation="erase", family_id=family_id):
            logger.info("Starting family erasure")

            try:
                async with self._store.transaction() as conn:
                    for entity in self._graph.deletion_order():
                        result = await conn.execute(
                            delete(entity.table).where(
                                self._graph.scope_clause(entity.name, family_id)
                            )
                        )
                        counts[entity.count_key] = max(result.rowcount or 0, 0)
            except Exception as e:
                logger.error(
                    "Family erasure failed, nothing was deleted",
                    failed_after=list(counts),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            summary = DeletionSummary(family_id=family_id, counts=counts)
            logger.info("Family erasure completed", rows=summary.total_rows)
            return summary


async def erase_family(
    family_id: str,
    store: PortabilityStore | None = None,
) -> DeletionSummary:
    """Erase a family using a default eraser."""
    return await FamilyEraser(store=store).erase(family_id)
