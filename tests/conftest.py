"""
Pytest Configuration and Shared Fixtures.

This module provides shared fixtures for testing the family portability engine:
a temporary SQLite store with the full schema, seeded families and
snapshot payloads.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest
from sqlalchemy import Table, func, insert, select
from sqlalchemy.ext.asyncio import AsyncConnection

from family_portability.config.settings import DatabaseSettings, Settings, get_settings
from family_portability.store import tables
from family_portability.store.client import PortabilityStore

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_id() -> str:
    return str(uuid.uuid4())


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


async def insert_row(conn: AsyncConnection, table: Table, **values: Any) -> str:
    """Insert one row and return its id."""
    values.setdefault("id", make_id())
    await conn.execute(insert(table).values(**values))
    return values["id"]


async def count_rows(store: PortabilityStore, table: Table, **filters: Any) -> int:
    """Count rows of a table, optionally filtered by column equality."""
    query = select(func.count()).select_from(table)
    for column, value in filters.items():
        query = query.where(table.c[column] == value)
    async with store.connection() as conn:
        return (await conn.scalar(query)) or 0


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Provide test settings read from the environment."""
    with patch.dict(
        "os.environ",
        {
            "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'settings.db'}",
            "PORTABILITY_EXTERNAL_REFERENCES": "Reject",
            "OBSERVABILITY_LOG_FORMAT": "CONSOLE",
            "LOG_LEVEL": "debug",
        },
    ):
        # Clear cache and get fresh settings
        get_settings.cache_clear()
        settings = get_settings()
    get_settings.cache_clear()
    return settings


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'portability.db'}"


@pytest.fixture
def database_settings(database_url: str) -> DatabaseSettings:
    return DatabaseSettings(url=database_url)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
async def store(database_settings: DatabaseSettings) -> AsyncGenerator[PortabilityStore, None]:
    """Connected store with every table created."""
    store = PortabilityStore(settings=database_settings)
    await store.setup_schema()
    yield store
    await store.close()


@pytest.fixture
async def scenario_family(store: PortabilityStore) -> dict[str, Any]:
    """
    Family F with one member U1, two posts by U1 and one conversation
    holding two messages, the second replying to the first.
    """
    async with store.transaction() as conn:
        user_id = await insert_row(
            conn, tables.users,
            email="u1@example.com", display_name="U1",
            password_hash="$argon2id$secret", created_at=at(0),
        )
        family_id = await insert_row(conn, tables.families, name="F", created_at=at(0))
        await insert_row(
            conn, tables.family_members,
            family_id=family_id, user_id=user_id, role="OWNER", joined_at=at(1),
        )
        post_ids = [
            await insert_row(
                conn, tables.posts,
                family_id=family_id, author_id=user_id, body=f"post {i}", created_at=at(10 + i),
            )
            for i in range(2)
        ]
        conversation_id = await insert_row(
            conn, tables.conversations,
            family_id=family_id, type="group", title="Chat", created_by=user_id, created_at=at(20),
        )
        first_message = await insert_row(
            conn, tables.messages,
            conversation_id=conversation_id, sender_id=user_id, content="hello", created_at=at(21),
        )
        reply = await insert_row(
            conn, tables.messages,
            conversation_id=conversation_id, sender_id=user_id, content="hi again",
            reply_to_id=first_message, created_at=at(22),
        )

    return {
        "family_id": family_id,
        "user_id": user_id,
        "post_ids": post_ids,
        "conversation_id": conversation_id,
        "message_ids": [first_message, reply],
    }


@pytest.fixture
async def full_family(store: PortabilityStore) -> dict[str, Any]:
    """Family with two members and rows of every entity type."""
    async with store.transaction() as conn:
        alice = await insert_row(conn, tables.users, email="alice@example.com", display_name="Alice")
        bob = await insert_row(conn, tables.users, email="bob@example.com", display_name="Bob")
        family_id = await insert_row(
            conn, tables.families,
            name="Full", description="All the things", settings={"theme": "dark"},
            created_by=alice, created_at=at(0),
        )
        for i, user_id in enumerate((alice, bob)):
            await insert_row(
                conn, tables.family_members,
                family_id=family_id, user_id=user_id,
                role="OWNER" if i == 0 else "CHILD_MEMBER", joined_at=at(i),
            )

        post_id = await insert_row(
            conn, tables.posts,
            family_id=family_id, author_id=alice, title="Welcome", body="Hi", created_at=at(5),
        )
        media_id = await insert_row(
            conn, tables.media_items,
            family_id=family_id, uploaded_by=bob, file_name="photo.jpg", mime_type="image/jpeg",
            file_size=2048, storage_path="media/photo.jpg", checksum_sha256="ab" * 32,
            created_at=at(6),
        )
        for i, variant in enumerate(("thumbnail", "medium")):
            await insert_row(
                conn, tables.media_variants,
                media_item_id=media_id, variant_type=variant,
                storage_path=f"media/photo-{variant}.jpg", mime_type="image/jpeg",
                file_size=512, width=100 * (i + 1), height=100 * (i + 1), created_at=at(7 + i),
            )
        await insert_row(
            conn, tables.events,
            family_id=family_id, title="Birthday", start_at=at(60 * 24),
            location="Home", created_by=alice, created_at=at(9),
        )
        await insert_row(
            conn, tables.recipes,
            family_id=family_id, title="Pancakes", servings=4,
            cover_image_id=media_id, created_by=bob, created_at=at(10),
        )
        conversation_id = await insert_row(
            conn, tables.conversations,
            family_id=family_id, type="direct", created_by=alice, created_at=at(11),
        )
        first = await insert_row(
            conn, tables.messages,
            conversation_id=conversation_id, sender_id=alice, content="Look", media_id=media_id,
            created_at=at(12),
        )
        second = await insert_row(
            conn, tables.messages,
            conversation_id=conversation_id, sender_id=bob, content="Nice",
            reply_to_id=first, created_at=at(13),
        )
        await insert_row(
            conn, tables.messages,
            conversation_id=conversation_id, sender_id=alice, content="Thanks",
            reply_to_id=second, created_at=at(14),
        )
        vault_id = await insert_row(
            conn, tables.legacy_vaults,
            family_id=family_id, owner_id=alice, title="For Bob", status="sealed", created_at=at(15),
        )
        await insert_row(
            conn, tables.vault_items,
            vault_id=vault_id, content_type="media", media_id=media_id, sort_order=1, created_at=at(16),
        )
        await insert_row(
            conn, tables.vault_items,
            vault_id=vault_id, content_type="text", content="Letter", sort_order=0, created_at=at(17),
        )
        await insert_row(
            conn, tables.relationships,
            family_id=family_id, from_user_id=alice, to_user_id=bob,
            relationship_type="parent", created_at=at(18),
        )
        await insert_row(
            conn, tables.audit_events,
            family_id=family_id, event_type="post.created", actor_id=alice,
            subject_id=post_id, subject_type="post", created_at=at(19),
        )

    return {
        "family_id": family_id,
        "member_ids": [alice, bob],
        "post_id": post_id,
        "media_id": media_id,
        "conversation_id": conversation_id,
        "vault_id": vault_id,
    }


@pytest.fixture
async def bystander_family(store: PortabilityStore) -> dict[str, Any]:
    """An unrelated family that operations on other families must not touch."""
    async with store.transaction() as conn:
        user_id = await insert_row(conn, tables.users, email="carol@example.com")
        family_id = await insert_row(conn, tables.families, name="Bystanders")
        await insert_row(conn, tables.family_members, family_id=family_id, user_id=user_id)
        await insert_row(conn, tables.posts, family_id=family_id, author_id=user_id, body="mine")
        conversation_id = await insert_row(
            conn, tables.conversations, family_id=family_id, created_by=user_id
        )
        message_id = await insert_row(
            conn, tables.messages, conversation_id=conversation_id, sender_id=user_id, content="x"
        )

    return {
        "family_id": family_id,
        "user_id": user_id,
        "conversation_id": conversation_id,
        "message_id": message_id,
    }


# =============================================================================
# Snapshot Fixtures
# =============================================================================


@pytest.fixture
def snapshot_payload() -> dict[str, Any]:
    """Decoded version 1.0 snapshot of a small family."""
    return {
        "version": "1.0",
        "exported_at": "2024-03-01T12:00:00+00:00",
        "family": {"id": "fam-1", "name": "F", "created_at": "2024-01-01T00:00:00+00:00"},
        "members": [
            {"id": "user-1", "email": "u1@example.com", "display_name": "U1", "role": "OWNER"},
        ],
        "posts": [
            {"id": "post-1", "author_id": "user-1", "body": "hello", "family_id": "fam-1"},
        ],
        "media_items": [
            {
                "id": "media-1",
                "uploaded_by": "user-1",
                "file_name": "a.png",
                "mime_type": "image/png",
                "storage_path": "media/a.png",
                "variants": [
                    {
                        "id": "variant-1",
                        "variant_type": "thumbnail",
                        "storage_path": "media/a-thumb.png",
                        "mime_type": "image/png",
                    },
                ],
            },
        ],
        "conversations": [{"id": "conv-1", "created_by": "user-1"}],
        "messages": [
            {"id": "msg-2", "conversation_id": "conv-1", "sender_id": "user-1", "reply_to_id": "msg-1"},
            {"id": "msg-1", "conversation_id": "conv-1", "sender_id": "user-1"},
        ],
    }
