"""
Family Data Portability.

Moves a family's complete data graph in and out of the store:
- Export to a versioned, self-contained snapshot
- Import under fresh identifiers, as a new family or merged into one
- Irreversible erasure in dependency-safe order
- Integrity verification and per-entity summaries
"""

from family_portability.portability.archive import (
    ArchiveInfo,
    read_snapshot,
    write_snapshot,
)
from family_portability.portability.eraser import (
    DeletionSummary,
    FamilyEraser,
    erase_family,
)
from family_portability.portability.errors import (
    DependencyCycleError,
    ExternalReferenceError,
    FamilyNotFoundError,
    InvalidSnapshotError,
    PortabilityError,
    UnsupportedSnapshotVersionError,
)
from family_portability.portability.exporter import FamilyExporter, export_family
from family_portability.portability.graph import (
    FAMILY_GRAPH,
    EntityGraph,
    EntityType,
    Reference,
)
from family_portability.portability.importer import (
    ExternalReference,
    FamilyImporter,
    ImportSummary,
    import_snapshot,
)
from family_portability.portability.integrity import (
    IntegrityIssue,
    IntegrityReport,
    IntegrityVerifier,
    IssueCategory,
    verify_family,
)
from family_portability.portability.remapper import IdRemapper, remap_id
from family_portability.portability.schema import SNAPSHOT_VERSION, Snapshot
from family_portability.portability.summary import (
    DataSummarizer,
    DataSummary,
    summarize_family,
)

__all__ = [
    # Snapshot
    "SNAPSHOT_VERSION",
    "Snapshot",
    "ArchiveInfo",
    "read_snapshot",
    "write_snapshot",
    # Entity graph
    "FAMILY_GRAPH",
    "EntityGraph",
    "EntityType",
    "Reference",
    # Identifier remapping
    "IdRemapper",
    "remap_id",
    # Operations
    "FamilyExporter",
    "export_family",
    "FamilyImporter",
    "ImportSummary",
    "ExternalReference",
    "import_snapshot",
    "FamilyEraser",
    "DeletionSummary",
    "erase_family",
    "IntegrityVerifier",
    "IntegrityReport",
    "IntegrityIssue",
    "IssueCategory",
    "verify_family",
    "DataSummarizer",
    "DataSummary",
    "summarize_family",
    # Errors
    "PortabilityError",
    "FamilyNotFoundError",
    "UnsupportedSnapshotVersionError",
    "InvalidSnapshotError",
    "ExternalReferenceError",
    "DependencyCycleError",
]
