"""
Integration Tests for the Integrity Verifier.

Seeds broken family graphs on SQLite and checks the reported issues.
"""

from typing import Any

import pytest
from sqlalchemy import update

from family_portability.portability.exporter import export_family
from family_portability.portability.importer import FamilyImporter
from family_portability.portability.integrity import (
    IntegrityReport,
    IntegrityVerifier,
    IssueCategory,
    verify_family,
)
from family_portability.store import tables
from family_portability.store.client import PortabilityStore

from conftest import insert_row


async def _outsider(store: PortabilityStore) -> str:
    """A user who exists but belongs to no family."""
    async with store.transaction() as conn:
        return await insert_row(conn, tables.users, email="outsider@example.com")


async def _soft_delete_media(store: PortabilityStore, media_id: str) -> None:
    async with store.transaction() as conn:
        await conn.execute(
            update(tables.media_items)
            .where(tables.media_items.c.id == media_id)
            .values(is_deleted=True)
        )


class TestIntegrityVerifier:
    """Test cases for IntegrityVerifier."""

    @pytest.mark.asyncio
    async def test_consistent_family(
        self, store: PortabilityStore, full_family: dict[str, Any]
    ) -> None:
        report = await IntegrityVerifier(store=store).verify(full_family["family_id"])

        assert report.valid
        assert report.issues == []

    @pytest.mark.asyncio
    async def test_freshly_imported_family(
        self, store: PortabilityStore, scenario_family: dict[str, Any]
    ) -> None:
        snapshot = await export_family(scenario_family["family_id"], store=store)
        summary = await FamilyImporter(store=store).import_snapshot(snapshot)

        assert (await verify_family(summary.family_id, store=store)).valid

    @pytest.mark.asyncio
    async def test_missing_family(self, store: PortabilityStore) -> None:
        report = await verify_family("ghost", store=store)

        assert not report.valid
        assert [issue.description for issue in report.issues] == ["Family record not found"]
        assert report.issues[0].category == IssueCategory.MISSING_FAMILY

    @pytest.mark.asyncio
    async def test_post_author_not_member(
        self, store: PortabilityStore, scenario_family: dict[str, Any]
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            await insert_row(
                conn, tables.posts,
                family_id=scenario_family["family_id"], author_id=outsider, body="intruder",
            )

        report = await verify_family(scenario_family["family_id"], store=store)

        assert not report.valid
        assert [issue.description for issue in report.issues] == [
            "1 post(s) with authors not in family members"
        ]

    @pytest.mark.asyncio
    async def test_media_uploader_not_member(
        self, store: PortabilityStore, full_family: dict[str, Any]
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            await conn.execute(
                update(tables.media_items)
                .where(tables.media_items.c.id == full_family["media_id"])
                .values(uploaded_by=outsider)
            )

        report = await verify_family(full_family["family_id"], store=store)

        assert [issue.description for issue in report.issues] == [
            "1 media item(s) with uploaders not in family members"
        ]

    @pytest.mark.asyncio
    async def test_soft_deleted_media_keeps_variants_valid(
        self, store: PortabilityStore, full_family: dict[str, Any]
    ) -> None:
        await _soft_delete_media(store, full_family["media_id"])

        report = await verify_family(full_family["family_id"], store=store)

        assert report.valid
        assert IssueCategory.ORPHAN_VARIANT not in [issue.category for issue in report.issues]

    @pytest.mark.asyncio
    async def test_imported_family_with_soft_deleted_media(
        self, store: PortabilityStore, full_family: dict[str, Any]
    ) -> None:
        await _soft_delete_media(store, full_family["media_id"])

        snapshot = await export_family(full_family["family_id"], store=store)
        assert snapshot.media_items[0].is_deleted
        assert len(snapshot.media_items[0].variants) == 2

        summary = await FamilyImporter(store=store).import_snapshot(snapshot)
        report = await verify_family(summary.family_id, store=store)

        assert summary.counts["media_variants"] == 2
        assert report.valid, report.to_dict()["issues"]

    @pytest.mark.asyncio
    async def test_message_sender_not_member(
        self, store: PortabilityStore, scenario_family: dict[str, Any]
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            for _ in range(2):
                await insert_row(
                    conn, tables.messages,
                    conversation_id=scenario_family["conversation_id"], sender_id=outsider,
                )

        report = await verify_family(scenario_family["family_id"], store=store)

        assert [issue.description for issue in report.issues] == [
            "2 message(s) from senders not in family members"
        ]

    @pytest.mark.asyncio
    async def test_vault_item_in_foreign_vault(
        self,
        store: PortabilityStore,
        full_family: dict[str, Any],
        bystander_family: dict[str, Any],
    ) -> None:
        async with store.transaction() as conn:
            foreign_vault = await insert_row(
                conn, tables.legacy_vaults,
                family_id=bystander_family["family_id"], owner_id=bystander_family["user_id"],
                title="Not yours",
            )
            await insert_row(
                conn, tables.vault_items,
                vault_id=foreign_vault, media_id=full_family["media_id"], content_type="media",
            )

        report = await verify_family(full_family["family_id"], store=store)

        assert [issue.description for issue in report.issues] == [
            "1 vault item(s) referencing non-existent vaults"
        ]

    @pytest.mark.asyncio
    async def test_relationship_with_outsider(
        self, store: PortabilityStore, full_family: dict[str, Any]
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            await insert_row(
                conn, tables.relationships,
                family_id=full_family["family_id"], from_user_id=full_family["member_ids"][0],
                to_user_id=outsider, relationship_type="sibling",
            )

        report = await verify_family(full_family["family_id"], store=store)

        assert [issue.description for issue in report.issues] == [
            "1 relationship(s) referencing users not in family members"
        ]

    @pytest.mark.asyncio
    async def test_reply_to_foreign_message(
        self,
        store: PortabilityStore,
        scenario_family: dict[str, Any],
        bystander_family: dict[str, Any],
    ) -> None:
        async with store.transaction() as conn:
            await insert_row(
                conn, tables.messages,
                conversation_id=scenario_family["conversation_id"],
                sender_id=scenario_family["user_id"],
                reply_to_id=bystander_family["message_id"],
            )

        report = await verify_family(scenario_family["family_id"], store=store)

        assert [issue.description for issue in report.issues] == [
            "1 message(s) replying to messages outside family conversations"
        ]

    @pytest.mark.asyncio
    async def test_checks_are_independent(
        self, store: PortabilityStore, scenario_family: dict[str, Any]
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            await insert_row(
                conn, tables.posts,
                family_id=scenario_family["family_id"], author_id=outsider,
            )
            await insert_row(
                conn, tables.messages,
                conversation_id=scenario_family["conversation_id"], sender_id=outsider,
            )

        report = await verify_family(scenario_family["family_id"], store=store)
        data = report.to_dict()

        assert data["valid"] is False
        assert data["categories"] == {"post_author": 1, "message_sender": 1}
        assert len(data["issues"]) == 2

    @pytest.mark.asyncio
    async def test_other_families_not_reported(
        self,
        store: PortabilityStore,
        scenario_family: dict[str, Any],
        bystander_family: dict[str, Any],
    ) -> None:
        outsider = await _outsider(store)
        async with store.transaction() as conn:
            await insert_row(
                conn, tables.posts,
                family_id=bystander_family["family_id"], author_id=outsider,
            )

        assert (await verify_family(scenario_family["family_id"], store=store)).valid


class TestIntegrityReport:
    """Test cases for IntegrityReport."""

    def test_valid_follows_issues(self) -> None:
        report = IntegrityReport(family_id="f")
        assert report.valid
        assert report.to_dict()["issues"] == []
