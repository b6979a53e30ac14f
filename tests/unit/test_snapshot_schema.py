"""
Unit Tests for the Snapshot Schema.

Tests snapshot validation, version gating and serialization.
"""

import json
import uuid
from typing import Any

import pytest
from pydantic import ValidationError

from family_portability.portability.errors import (
    InvalidSnapshotError,
    UnsupportedSnapshotVersionError,
)
from family_portability.portability.schema import SNAPSHOT_VERSION, MediaItemRecord, Snapshot


class TestSnapshotValidation:
    """Test cases for Snapshot.from_payload."""

    def test_valid_payload(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)

        assert snapshot.version == SNAPSHOT_VERSION
        assert snapshot.family.id == "fam-1"
        assert [m.id for m in snapshot.messages] == ["msg-2", "msg-1"]

    @pytest.mark.parametrize("version", ["2.0", "1", 1.0, None])
    def test_other_versions_rejected(self, snapshot_payload: dict[str, Any], version: Any) -> None:
        snapshot_payload["version"] = version

        with pytest.raises(UnsupportedSnapshotVersionError) as exc_info:
            Snapshot.from_payload(snapshot_payload)

        assert exc_info.value.version == version

    def test_missing_version_rejected(self, snapshot_payload: dict[str, Any]) -> None:
        del snapshot_payload["version"]

        with pytest.raises(UnsupportedSnapshotVersionError):
            Snapshot.from_payload(snapshot_payload)

    def test_not_an_object(self) -> None:
        with pytest.raises(InvalidSnapshotError, match="JSON object"):
            Snapshot.from_payload(["not", "a", "snapshot"])

    def test_missing_family(self, snapshot_payload: dict[str, Any]) -> None:
        del snapshot_payload["family"]

        with pytest.raises(InvalidSnapshotError):
            Snapshot.from_payload(snapshot_payload)

    def test_missing_reference_column(self, snapshot_payload: dict[str, Any]) -> None:
        del snapshot_payload["posts"][0]["author_id"]

        with pytest.raises(InvalidSnapshotError) as exc_info:
            Snapshot.from_payload(snapshot_payload)

        assert isinstance(exc_info.value.__cause__, ValidationError)

    def test_snapshot_instance_passes_through(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)
        assert Snapshot.from_payload(snapshot) is snapshot

    def test_immutable(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)

        with pytest.raises(ValidationError):
            snapshot.family.name = "Changed"  # type: ignore[misc]


class TestSnapshotRecords:
    """Test cases for record access and counting."""

    def test_extra_columns_kept(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)
        assert snapshot.posts[0].values()["family_id"] == "fam-1"

    def test_variants_inherit_parent_id(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)
        variant = snapshot.media_items[0].variants[0]
        assert variant.media_item_id == "media-1"

    def test_null_variants(self) -> None:
        item = MediaItemRecord.model_validate({
            "id": "m",
            "uploaded_by": "u",
            "file_name": "f",
            "mime_type": "text/plain",
            "storage_path": "p",
            "variants": None,
        })
        assert item.variants == []

    def test_uuid_identifiers_stringified(self, snapshot_payload: dict[str, Any]) -> None:
        family_id = uuid.uuid4()
        snapshot_payload["family"]["id"] = family_id

        snapshot = Snapshot.from_payload(snapshot_payload)

        assert snapshot.family.id == str(family_id)

    def test_records_by_entity(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)

        assert [r.id for r in snapshot.records("families")] == ["fam-1"]
        assert [r.id for r in snapshot.records("media_variants")] == ["variant-1"]
        assert snapshot.records("events") == []

    def test_counts(self, snapshot_payload: dict[str, Any]) -> None:
        counts = Snapshot.from_payload(snapshot_payload).counts()

        assert counts["members"] == 1
        assert counts["media_variants"] == 1
        assert counts["messages"] == 2
        assert counts["vault_items"] == 0

    def test_to_dict_is_json(self, snapshot_payload: dict[str, Any]) -> None:
        snapshot = Snapshot.from_payload(snapshot_payload)
        data = snapshot.to_dict()

        decoded = json.loads(json.dumps(data))
        assert decoded["version"] == "1.0"
        assert decoded["family"]["name"] == "F"
        assert decoded["media_items"][0]["variants"][0]["id"] == "variant-1"
        assert Snapshot.from_payload(decoded).to_dict() == data
