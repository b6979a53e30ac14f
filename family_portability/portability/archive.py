"""
Snapshot Archives.

Stores snapshots on disk for transfer between deployments:
- UTF-8 JSON, optionally gzip-compressed
- SHA256 checksum written beside the archive and verified on read
"""

import gzip
import hashlib
import json
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from family_portability.portability.errors import InvalidSnapshotError
from family_portability.portability.schema import Snapshot

logger = structlog.get_logger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
CHECKSUM_SUFFIX = ".sha256"


@dataclass
class ArchiveInfo:
    """Location and fingerprint of a written snapshot archive."""

    path: str
    checksum: str
    size_bytes: int
    compressed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "checksum": self.checksum,
            "size_bytes": self.size_bytes,
            "compressed": self.compressed,
        }


def calculate_checksum(path: Path) -> str:
    """Calculate SHA256 checksum of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def checksum_path(path: Path) -> Path:
    return path.with_name(path.name + CHECKSUM_SUFFIX)


def write_snapshot(
    snapshot: Snapshot,
    path: str | Path,
    compress: bool | None = None,
) -> ArchiveInfo:
    """
    Write a snapshot archive and its checksum file.

    Args:
        snapshot: Snapshot to store
        path: Destination file
        compress: Gzip the archive; defaults to compressing when path ends in .gz

    Returns:
        ArchiveInfo describing the written file
    """
    path = Path(path)
    if compress is None:
        compress = path.suffix == ".gz"
    elif compress and path.suffix != ".gz":
        path = path.with_name(path.name + ".gz")

    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")

    if compress:
        with gzip.open(path, "wb") as f:
            f.write(data)
    else:
        path.write_bytes(data)

    checksum = calculate_checksum(path)
    checksum_path(path).write_text(f"{checksum}  {path.name}\n", encoding="utf-8")

    info = ArchiveInfo(
        path=str(path),
        checksum=checksum,
        size_bytes=path.stat().st_size,
        compressed=compress,
    )
    logger.info(
        "Snapshot archive written",
        path=info.path,
        size_bytes=info.size_bytes,
        compressed=compress,
    )
    return info


def read_snapshot(
    path: str | Path,
    expected_checksum: str | None = None,
) -> Snapshot:
    """
    Read and validate a snapshot archive.

    The checksum is verified against expected_checksum, or against the
    checksum file beside the archive when one exists.

    Raises:
        InvalidSnapshotError: On checksum mismatch or undecodable content
        UnsupportedSnapshotVersionError: If the archive holds another snapshot version
    """
    path = Path(path)

    if expected_checksum is None and checksum_path(path).exists():
        content = checksum_path(path).read_text(encoding="utf-8").split()
        expected_checksum = content[0] if content else None

    if expected_checksum is not None:
        actual = calculate_checksum(path)
        if actual != expected_checksum.lower():
            logger.error("Snapshot checksum mismatch", path=str(path))
            raise InvalidSnapshotError(
                f"Checksum mismatch for {path.name}: expected {expected_checksum}, got {actual}"
            )

    raw = path.read_bytes()

    try:
        if raw[:2] == GZIP_MAGIC:
            raw = gzip.decompress(raw)
        payload = json.loads(raw.decode("utf-8"))
    except (EOFError, OSError, zlib.error) as e:
        # Truncated or corrupt gzip stream
        raise InvalidSnapshotError(f"{path.name} is not a readable gzip archive: {e}") from e
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidSnapshotError(f"{path.name} is not a JSON snapshot: {e}") from e

    snapshot = Snapshot.from_payload(payload)
    logger.info("Snapshot archive read", path=str(path), family_id=snapshot.family.id)
    return snapshot
