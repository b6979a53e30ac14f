"""
Family Integrity Verifier.

Read-only consistency checks over one family's stored graph:
- Content attributed to users who are not family members
- Media variants whose media item row no longer exists
- Vault items attached to vaults outside the family
- Relationships and replies that leave the family
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import ColumnElement, Select, Table, and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncConnection

from family_portability.observability.logging import LogContext
from family_portability.portability.graph import FAMILY_GRAPH, EntityGraph
from family_portability.store.client import PortabilityStore, get_store
from family_portability.store.tables import (
    family_members,
    legacy_vaults,
    media_items,
    media_variants,
    messages,
    posts,
    relationships,
    vault_items,
)

logger = structlog.get_logger(__name__)


class IssueCategory(str, Enum):
    """Categories of integrity issues."""

    MISSING_FAMILY = "missing_family"                 # Family row absent
    POST_AUTHOR = "post_author"                       # Post author not a member
    MEDIA_UPLOADER = "media_uploader"                 # Uploader not a member
    ORPHAN_VARIANT = "orphan_variant"                 # Variant without its media item
    MESSAGE_SENDER = "message_sender"                 # Sender not a member
    ORPHAN_VAULT_ITEM = "orphan_vault_item"           # Vault item outside the family's vaults
    RELATIONSHIP_MEMBER = "relationship_member"       # Relationship endpoint not a member
    FOREIGN_REPLY = "foreign_reply"                   # Reply to a message outside the family


ISSUE_DESCRIPTIONS: dict[IssueCategory, str] = {
    IssueCategory.POST_AUTHOR: "post(s) with authors not in family members",
    IssueCategory.MEDIA_UPLOADER: "media item(s) with uploaders not in family members",
    IssueCategory.ORPHAN_VARIANT: "media variant(s) referencing non-existent media items",
    IssueCategory.MESSAGE_SENDER: "message(s) from senders not in family members",
    IssueCategory.ORPHAN_VAULT_ITEM: "vault item(s) referencing non-existent vaults",
    IssueCategory.RELATIONSHIP_MEMBER: "relationship(s) referencing users not in family members",
    IssueCategory.FOREIGN_REPLY: "message(s) replying to messages outside family conversations",
}


@dataclass
class IntegrityIssue:
    """One category of problems found in a family's graph."""

    category: IssueCategory
    description: str
    count: int = 1

    @classmethod
    def counted(cls, category: IssueCategory, count: int) -> "IntegrityIssue":
        return cls(
            category=category,
            description=f"{count} {ISSUE_DESCRIPTIONS[category]}",
            count=count,
        )


@dataclass
class IntegrityReport:
    """Report of integrity check results."""

    family_id: str
    issues: list[IntegrityIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def valid(self) -> bool:
        return not self.issues

    def add_issue(self, issue: IntegrityIssue) -> None:
        """Add an issue to the report."""
        self.issues.append(issue)

    def to_dict(self) -> dict[str, Any]:
        return {
            "family_id": self.family_id,
            "valid": self.valid,
            "issues": [issue.description for issue in self.issues],
            "categories": {issue.category.value: issue.count for issue in self.issues},
            "checked_at": self.checked_at.isoformat(),
        }


class IntegrityVerifier:
    """
    Checks referential integrity of one family's data.

    Every check runs independently of the others; a data problem is
    reported, never raised. Only store errors propagate.

    Usage:
        ```python
        verifier = IntegrityVerifier()
        report = await verifier.verify(family_id)

        if not report.valid:
            for issue in report.issues:
                print(f"  - {issue.description}")
        ```
    """

    def __init__(
        self,
        store: PortabilityStore | None = None,
        graph: EntityGraph | None = None,
    ) -> None:
        self._store = store or get_store()
        self._graph = graph or FAMILY_GRAPH

    async def verify(self, family_id: str) -> IntegrityReport:
        """
        Verify a family's referential integrity.

        Args:
            family_id: Family to check

        Returns:
            IntegrityReport listing every issue found
        """
        report = IntegrityReport(family_id=family_id)

        with LogContext(operation="verify", family_id=family_id):
            logger.info("Starting integrity check")

            async with self._store.connection() as conn:
                if not await self._family_exists(conn, family_id):
                    report.add_issue(IntegrityIssue(
                        category=IssueCategory.MISSING_FAMILY,
                        description="Family record not found",
                    ))
                    logger.warning("Family record not found")
                    return report

                await self._check_post_authors(conn, family_id, report)
                await self._check_media_uploaders(conn, family_id, report)
                await self._check_media_variants(conn, family_id, report)
                await self._check_message_senders(conn, family_id, report)
                await self._check_vault_items(conn, family_id, report)
                await self._check_relationships(conn, family_id, report)
                await self._check_replies(conn, family_id, report)

            logger.info(
                "Integrity check completed",
                valid=report.valid,
                issues=len(report.issues),
            )
            return report

    async def _family_exists(self, conn: AsyncConnection, family_id: str) -> bool:
        table = self._graph.get("families").table
        result = await conn.execute(select(table.c.id).where(table.c.id == family_id))
        return result.first() is not None

    def _member_ids(self, family_id: str) -> Select:
        return select(family_members.c.user_id).where(family_members.c.family_id == family_id)

    async def _count(
        self,
        conn: AsyncConnection,
        table: Table,
        *criteria: ColumnElement[bool],
    ) -> int:
        query = select(func.count()).select_from(table).where(and_(*criteria))
        return (await conn.scalar(query)) or 0

    async def _record(
        self,
        report: IntegrityReport,
        category: IssueCategory,
        count: int,
    ) -> None:
        if count > 0:
            report.add_issue(IntegrityIssue.counted(category, count))
            logger.warning("Integrity issue found", category=category.value, count=count)

    # =========================================================================
    # Checks
    # =========================================================================

    async def _check_post_authors(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        count = await self._count(
            conn,
            posts,
            self._graph.scope_clause("posts", family_id),
            posts.c.author_id.not_in(self._member_ids(family_id)),
        )
        await self._record(report, IssueCategory.POST_AUTHOR, count)

    async def _check_media_uploaders(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        count = await self._count(
            conn,
            media_items,
            self._graph.scope_clause("media_items", family_id),
            media_items.c.uploaded_by.not_in(self._member_ids(family_id)),
        )
        await self._record(report, IssueCategory.MEDIA_UPLOADER, count)

    async def _check_media_variants(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        """Variants of the family's media whose media item row is gone."""
        item_exists = exists().where(media_items.c.id == media_variants.c.media_item_id)
        count = await self._count(
            conn,
            media_variants,
            media_variants.c.media_item_id.in_(self._graph.scoped_ids("media_items", family_id)),
            ~item_exists,
        )
        await self._record(report, IssueCategory.ORPHAN_VARIANT, count)

    async def _check_message_senders(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        count = await self._count(
            conn,
            messages,
            self._graph.scope_clause("messages", family_id),
            messages.c.sender_id.not_in(self._member_ids(family_id)),
        )
        await self._record(report, IssueCategory.MESSAGE_SENDER, count)

    async def _check_vault_items(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        """Items holding the family's media whose vault is not one of the family's vaults."""
        family_media = self._graph.scoped_ids("media_items", family_id)
        family_vaults = select(legacy_vaults.c.id).where(
            self._graph.scope_clause("vaults", family_id)
        )
        count = await self._count(
            conn,
            vault_items,
            vault_items.c.media_id.in_(family_media),
            vault_items.c.vault_id.not_in(family_vaults),
        )
        await self._record(report, IssueCategory.ORPHAN_VAULT_ITEM, count)

    async def _check_relationships(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        members = self._member_ids(family_id)
        count = await self._count(
            conn,
            relationships,
            self._graph.scope_clause("relationships", family_id),
            or_(
                relationships.c.from_user_id.not_in(members),
                relationships.c.to_user_id.not_in(members),
            ),
        )
        await self._record(report, IssueCategory.RELATIONSHIP_MEMBER, count)

    async def _check_replies(
        self, conn: AsyncConnection, family_id: str, report: IntegrityReport
    ) -> None:
        # Inner SELECT reads the same table as the outer query
        family_messages = self._graph.scoped_ids("messages", family_id).correlate(None)
        count = await self._count(
            conn,
            messages,
            self._graph.scope_clause("messages", family_id),
            messages.c.reply_to_id.is_not(None),
            messages.c.reply_to_id.not_in(family_messages),
        )
        await self._record(report, IssueCategory.FOREIGN_REPLY, count)


async def verify_family(
    family_id: str,
    store: PortabilityStore | None = None,
) -> IntegrityReport:
    """Verify a family using a default verifier."""
    return await IntegrityVerifier(store=store).verify(family_id)
