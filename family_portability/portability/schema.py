"""
Snapshot Schema.

Pydantic models of a versioned family snapshot. A snapshot is the
self-contained, JSON-serializable copy of one family's data graph:
- One family record and its members
- Every family-scoped entity collection, media variants nested under their items
- Records keep any extra columns they were exported with
"""

import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, model_validator

from family_portability.portability.errors import (
    InvalidSnapshotError,
    UnsupportedSnapshotVersionError,
)

SNAPSHOT_VERSION = "1.0"


def _stringify_id(v: Any) -> Any:
    if isinstance(v, uuid.UUID):
        return str(v)
    return v


def _none_to_list(v: Any) -> Any:
    return [] if v is None else v


Identifier = Annotated[str, BeforeValidator(_stringify_id)]
OptionalIdentifier = Annotated[str | None, BeforeValidator(_stringify_id)]


class SnapshotRecord(BaseModel):
    """Base for every exported row. Unknown columns are carried along verbatim."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id: Identifier
    created_at: datetime | None = None

    def values(self) -> dict[str, Any]:
        return self.model_dump()


class FamilyRecord(SnapshotRecord):
    name: str
    description: str | None = None
    settings: dict[str, Any] | None = None
    created_by: OptionalIdentifier = None


class MemberRecord(SnapshotRecord):
    """A user identity together with its membership in the family."""

    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    role: str | None = None
    joined_at: datetime | None = None


class PostRecord(SnapshotRecord):
    author_id: Identifier
    post_type: str | None = None
    title: str | None = None
    body: str | None = None
    visibility: str | None = None


class MediaVariantRecord(SnapshotRecord):
    media_item_id: Identifier
    variant_type: str
    storage_path: str
    mime_type: str
    file_size: int | None = None
    width: int | None = None
    height: int | None = None


class MediaItemRecord(SnapshotRecord):
    uploaded_by: Identifier
    file_name: str
    mime_type: str
    file_size: int | None = None
    storage_path: str
    checksum_sha256: str | None = None
    is_deleted: bool | None = None
    variants: Annotated[list[MediaVariantRecord], BeforeValidator(_none_to_list)] = Field(
        default_factory=list
    )

    @model_validator(mode="before")
    @classmethod
    def _attach_variants(cls, data: Any) -> Any:
        # Variants aggregated without their parent column belong to this item
        if isinstance(data, Mapping) and data.get("variants"):
            parent_id = _stringify_id(data.get("id"))
            variants = [
                {"media_item_id": parent_id, **v} if isinstance(v, Mapping) else v
                for v in data["variants"]
            ]
            data = {**data, "variants": variants}
        return data


class EventRecord(SnapshotRecord):
    title: str
    description: str | None = None
    start_at: datetime
    end_at: datetime | None = None
    all_day: bool | None = None
    location: str | None = None
    created_by: Identifier


class RecipeRecord(SnapshotRecord):
    title: str
    description: str | None = None
    servings: int | None = None
    cover_image_id: OptionalIdentifier = None
    created_by: Identifier


class ConversationRecord(SnapshotRecord):
    type: str | None = None
    title: str | None = None
    created_by: Identifier


class MessageRecord(SnapshotRecord):
    conversation_id: Identifier
    sender_id: Identifier
    content: str | None = None
    message_type: str | None = None
    reply_to_id: OptionalIdentifier = None
    media_id: OptionalIdentifier = None


class VaultRecord(SnapshotRecord):
    owner_id: Identifier
    title: str
    description: str | None = None
    status: str | None = None
    release_condition: str | None = None


class VaultItemRecord(SnapshotRecord):
    vault_id: Identifier
    content_type: str | None = None
    title: str | None = None
    content: str | None = None
    media_id: OptionalIdentifier = None
    sort_order: int | None = None


class RelationshipRecord(SnapshotRecord):
    from_user_id: Identifier
    to_user_id: Identifier
    relationship_type: str


class AuditEventRecord(SnapshotRecord):
    event_type: str
    actor_id: OptionalIdentifier = None
    subject_id: OptionalIdentifier = None
    subject_type: str | None = None
    payload: Any = None


class Snapshot(BaseModel):
    """Complete, immutable copy of one family's data graph."""

    model_config = ConfigDict(frozen=True)

    version: Literal["1.0"] = SNAPSHOT_VERSION
    exported_at: datetime
    family: FamilyRecord
    members: list[MemberRecord] = Field(default_factory=list)
    posts: list[PostRecord] = Field(default_factory=list)
    media_items: list[MediaItemRecord] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)
    recipes: list[RecipeRecord] = Field(default_factory=list)
    conversations: list[ConversationRecord] = Field(default_factory=list)
    messages: list[MessageRecord] = Field(default_factory=list)
    vaults: list[VaultRecord] = Field(default_factory=list)
    vault_items: list[VaultItemRecord] = Field(default_factory=list)
    relationships: list[RelationshipRecord] = Field(default_factory=list)
    audit_events: list[AuditEventRecord] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "Snapshot":
        """
        Validate a decoded snapshot.

        Raises:
            UnsupportedSnapshotVersionError: If the payload is not a version 1.0 snapshot
            InvalidSnapshotError: If the payload does not match the snapshot schema
        """
        if isinstance(payload, Snapshot):
            return payload
        if not isinstance(payload, Mapping):
            raise InvalidSnapshotError(
                f"Snapshot must be a JSON object, got {type(payload).__name__}"
            )

        version = payload.get("version")
        if version != SNAPSHOT_VERSION:
            raise UnsupportedSnapshotVersionError(version, SNAPSHOT_VERSION)

        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            raise InvalidSnapshotError(
                f"Invalid snapshot: {e.error_count()} validation error(s): {e}"
            ) from e

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def records(self, name: str) -> list[SnapshotRecord]:
        """Rows of one entity type, with media variants flattened out of their items."""
        if name == "families":
            return [self.family]
        if name == "media_variants":
            return [variant for item in self.media_items for variant in item.variants]
        return list(getattr(self, name))

    def counts(self) -> dict[str, int]:
        return {
            "members": len(self.members),
            "posts": len(self.posts),
            "media_items": len(self.media_items),
            "media_variants": sum(len(item.variants) for item in self.media_items),
            "events": len(self.events),
            "recipes": len(self.recipes),
            "conversations": len(self.conversations),
            "messages": len(self.messages),
            "vaults": len(self.vaults),
            "vault_items": len(self.vault_items),
            "relationships": len(self.relationships),
            "audit_events": len(self.audit_events),
        }
