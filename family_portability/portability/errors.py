"""Exceptions raised by the portability engine."""

from typing import Any


class PortabilityError(Exception):
    """Base class for portability engine errors."""


class FamilyNotFoundError(PortabilityError, LookupError):
    """The requested family does not exist."""

    def __init__(self, family_id: str) -> None:
        self.family_id = family_id
        super().__init__(f"Family not found: {family_id}")


class UnsupportedSnapshotVersionError(PortabilityError, ValueError):
    """The snapshot was written in a format this engine cannot read."""

    def __init__(self, version: Any, supported: str) -> None:
        self.version = version
        self.supported = supported
        super().__init__(f"Unsupported snapshot version: {version!r} (expected {supported!r})")


class InvalidSnapshotError(PortabilityError, ValueError):
    """The snapshot payload is malformed or failed checksum verification."""


class ExternalReferenceError(PortabilityError):
    """A snapshot row references an identifier that is not part of the snapshot."""

    def __init__(self, entity: str, column: str, value: str) -> None:
        self.entity = entity
        self.column = column
        self.value = value
        super().__init__(
            f"{entity}.{column} references {value}, which is not part of the snapshot"
        )


class DependencyCycleError(PortabilityError):
    """The entity graph declares a cycle between distinct entity types."""
