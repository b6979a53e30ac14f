"""
Identifier Remapping.

Assigns fresh identifiers to snapshot rows during import while keeping
every reference between them consistent. A mapping lives for exactly one
import call.
"""

import uuid


def remap_id(old_id: str, mapping: dict[str, str]) -> str:
    """
    Return the new identifier for ``old_id``, generating one on first sight.

    Repeated calls with the same mapping always return the same value.
    """
    new_id = mapping.get(old_id)
    if new_id is None:
        new_id = str(uuid.uuid4())
        mapping[old_id] = new_id
    return new_id


class IdRemapper:
    """
    Memoizing old-to-new identifier mapping for a single import.

    The same old identifier maps to the same new identifier whether it is
    first met as a row's primary key or as a reference from another row.
    """

    def __init__(self) -> None:
        self._mapping: dict[str, str] = {}

    def remap(self, old_id: str) -> str:
        return remap_id(str(old_id), self._mapping)

    def bind(self, old_id: str, new_id: str) -> None:
        """Pin ``old_id`` to an existing identifier (merge into an existing family)."""
        old_id = str(old_id)
        current = self._mapping.get(old_id)
        if current is not None and current != new_id:
            raise ValueError(f"{old_id} is already mapped to {current}")
        self._mapping[old_id] = str(new_id)

    def get(self, old_id: str, default: str | None = None) -> str | None:
        return self._mapping.get(str(old_id), default)

    @property
    def mapping(self) -> dict[str, str]:
        return dict(self._mapping)

    def __contains__(self, old_id: object) -> bool:
        return str(old_id) in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)
