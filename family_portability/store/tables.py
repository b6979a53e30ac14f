"""
Relational Schema Definitions.

SQLAlchemy Core tables for the family data graph:
- Families and their memberships over shared user identities
- Content scoped to a family (posts, media, events, recipes)
- Chat, legacy vaults and genealogy relationships
- Audit trail
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()


def new_id() -> str:
    """Generate a fresh row identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _id_column() -> Column:
    return Column("id", String(36), primary_key=True, default=new_id)


def _created_at() -> Column:
    return Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow)


def _family_column(ondelete: str = "CASCADE", nullable: bool = False) -> Column:
    return Column(
        "family_id",
        String(36),
        ForeignKey("families.id", ondelete=ondelete),
        nullable=nullable,
        index=True,
    )


def _user_column(name: str, nullable: bool = False, ondelete: str = "CASCADE") -> Column:
    return Column(name, String(36), ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


# =============================================================================
# Identity
# =============================================================================

users = Table(
    "users",
    metadata,
    _id_column(),
    Column("email", String(255), nullable=False),
    Column("password_hash", String(255)),
    Column("display_name", String(255)),
    Column("avatar_url", Text),
    _created_at(),
)

families = Table(
    "families",
    metadata,
    _id_column(),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("settings", JSON, nullable=False, default=dict),
    _user_column("created_by", nullable=True, ondelete="SET NULL"),
    _created_at(),
)

family_members = Table(
    "family_members",
    metadata,
    _id_column(),
    _family_column(),
    _user_column("user_id"),
    Column("role", String(32), nullable=False, default="ADULT_MEMBER"),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=utcnow),
    UniqueConstraint("family_id", "user_id", name="uq_family_members_family_user"),
)

# =============================================================================
# Family Content
# =============================================================================

posts = Table(
    "posts",
    metadata,
    _id_column(),
    _family_column(),
    _user_column("author_id"),
    Column("post_type", String(32), nullable=False, default="text"),
    Column("title", String(500)),
    Column("body", Text),
    Column("visibility", String(32), nullable=False, default="family"),
    _created_at(),
)

media_items = Table(
    "media_items",
    metadata,
    _id_column(),
    _family_column(),
    _user_column("uploaded_by"),
    Column("file_name", String(500), nullable=False),
    Column("mime_type", String(255), nullable=False),
    Column("file_size", BigInteger, nullable=False, default=0),
    Column("storage_path", Text, nullable=False),
    Column("checksum_sha256", String(64)),
    Column("is_deleted", Boolean, nullable=False, default=False),
    _created_at(),
)

media_variants = Table(
    "media_variants",
    metadata,
    _id_column(),
    Column(
        "media_item_id",
        String(36),
        ForeignKey("media_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("variant_type", String(32), nullable=False),
    Column("storage_path", Text, nullable=False),
    Column("mime_type", String(255), nullable=False),
    Column("file_size", BigInteger, nullable=False, default=0),
    Column("width", Integer),
    Column("height", Integer),
    _created_at(),
)

events = Table(
    "events",
    metadata,
    _id_column(),
    _family_column(),
    Column("title", String(500), nullable=False),
    Column("description", Text),
    Column("start_at", DateTime(timezone=True), nullable=False),
    Column("end_at", DateTime(timezone=True)),
    Column("all_day", Boolean, nullable=False, default=False),
    Column("location", Text),
    _user_column("created_by"),
    _created_at(),
)

recipes = Table(
    "recipes",
    metadata,
    _id_column(),
    _family_column(),
    Column("title", String(500), nullable=False),
    Column("description", Text),
    Column("servings", Integer),
    Column(
        "cover_image_id",
        String(36),
        ForeignKey("media_items.id", ondelete="SET NULL"),
    ),
    _user_column("created_by"),
    _created_at(),
)

# =============================================================================
# Chat
# =============================================================================

conversations = Table(
    "conversations",
    metadata,
    _id_column(),
    _family_column(),
    Column("type", String(32), nullable=False, default="direct"),
    Column("title", String(255)),
    _user_column("created_by"),
    _created_at(),
)

messages = Table(
    "messages",
    metadata,
    _id_column(),
    Column(
        "conversation_id",
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    _user_column("sender_id"),
    Column("content", Text),
    Column("message_type", String(32), nullable=False, default="text"),
    Column("reply_to_id", String(36), ForeignKey("messages.id", ondelete="SET NULL")),
    Column("media_id", String(36), ForeignKey("media_items.id", ondelete="SET NULL")),
    _created_at(),
)

# =============================================================================
# Legacy Vaults
# =============================================================================

legacy_vaults = Table(
    "legacy_vaults",
    metadata,
    _id_column(),
    _family_column(),
    _user_column("owner_id"),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(32), nullable=False, default="active"),
    Column("release_condition", String(32), nullable=False, default="manual"),
    _created_at(),
)

vault_items = Table(
    "vault_items",
    metadata,
    _id_column(),
    Column(
        "vault_id",
        String(36),
        ForeignKey("legacy_vaults.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("content_type", String(32), nullable=False, default="text"),
    Column("title", String(255)),
    Column("content", Text),
    Column("media_id", String(36), ForeignKey("media_items.id", ondelete="SET NULL")),
    Column("sort_order", Integer, nullable=False, default=0),
    _created_at(),
)

# =============================================================================
# Genealogy and Audit
# =============================================================================

relationships = Table(
    "relationships",
    metadata,
    _id_column(),
    _family_column(),
    _user_column("from_user_id"),
    _user_column("to_user_id"),
    Column("relationship_type", String(64), nullable=False),
    _created_at(),
)

audit_events = Table(
    "audit_events",
    metadata,
    _id_column(),
    _family_column(ondelete="SET NULL", nullable=True),
    Column("event_type", String(128), nullable=False),
    _user_column("actor_id", nullable=True, ondelete="SET NULL"),
    Column("subject_id", String(36)),
    Column("subject_type", String(64)),
    Column("payload", JSON),
    _created_at(),
)
