"""
Family Entity Graph.

Declares every entity type of a family's data graph together with the
references between them, and derives from those declarations:
- The order in which entity types must be written (parents first)
- The order in which they must be erased (children first)
- The SQL predicate that scopes an entity table to one family
"""

import heapq
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from sqlalchemy import ColumnElement, Select, Table, select

from family_portability.portability.errors import DependencyCycleError
from family_portability.store import tables


@dataclass(frozen=True)
class Reference:
    """
    A column holding the identifier of another entity.

    A deferred reference is filled in once the target rows exist and does
    not constrain the write order; it must be nullable.
    """

    column: str
    target: str
    nullable: bool = False
    deferred: bool = False

    def __post_init__(self) -> None:
        if self.deferred and not self.nullable:
            raise ValueError(f"Deferred reference {self.column} must be nullable")


@dataclass(frozen=True)
class EntityType:
    """
    One node of the entity graph.

    An entity is scoped to a family either directly through ``scope_column``
    or transitively through its owning ``parent``. The family itself is the
    root and is scoped by its own ``id``.
    """

    name: str
    table: Table
    scope_column: str | None = "family_id"
    parent: Reference | None = None
    references: tuple[Reference, ...] = ()
    columns: tuple[str, ...] = ()
    erase_key: str | None = None
    root: bool = False

    @property
    def count_key(self) -> str:
        return self.erase_key or self.name

    @property
    def all_references(self) -> tuple[Reference, ...]:
        if self.parent is None:
            return self.references
        return (self.parent, *self.references)

    @property
    def deferred_references(self) -> tuple[Reference, ...]:
        return tuple(ref for ref in self.all_references if ref.deferred)

    @property
    def self_references(self) -> tuple[Reference, ...]:
        return tuple(ref for ref in self.all_references if ref.target == self.name)

    @property
    def dependencies(self) -> frozenset[str]:
        deps = {ref.target for ref in self.all_references if not ref.deferred}
        if self.scope_column is not None and not self.root:
            deps.add("families")
        deps.discard(self.name)
        return frozenset(deps)


@dataclass
class EntityGraph:
    """Dependency graph over entity types, kept in declaration order."""

    entities: list[EntityType]
    _by_name: dict[str, EntityType] = field(init=False, repr=False)
    _order: list[EntityType] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_name = {}
        for entity in self.entities:
            if entity.name in self._by_name:
                raise ValueError(f"Duplicate entity type: {entity.name}")
            self._by_name[entity.name] = entity

        for entity in self.entities:
            targets = entity.dependencies | {ref.target for ref in entity.all_references}
            unknown = targets - self._by_name.keys()
            if unknown:
                raise ValueError(
                    f"{entity.name} references unknown entity types: {sorted(unknown)}"
                )

        self._order = self._topological_sort()

    def __iter__(self) -> Iterator[EntityType]:
        return iter(self.entities)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> EntityType:
        return self._by_name[name]

    def _topological_sort(self) -> list[EntityType]:
        """Kahn's algorithm, breaking ties by declaration order."""
        position = {entity.name: i for i, entity in enumerate(self.entities)}
        pending = {entity.name: set(entity.dependencies) for entity in self.entities}
        dependents: dict[str, list[str]] = {entity.name: [] for entity in self.entities}
        for name, deps in pending.items():
            for dep in deps:
                dependents[dep].append(name)

        ready = [position[name] for name, deps in pending.items() if not deps]
        heapq.heapify(ready)
        order: list[EntityType] = []

        while ready:
            entity = self.entities[heapq.heappop(ready)]
            order.append(entity)
            for dependent in dependents[entity.name]:
                pending[dependent].discard(entity.name)
                if not pending[dependent]:
                    heapq.heappush(ready, position[dependent])

        if len(order) != len(self.entities):
            stuck = sorted(name for name, deps in pending.items() if deps)
            raise DependencyCycleError(f"Cycle between entity types: {stuck}")

        return order

    def insertion_order(self) -> list[EntityType]:
        """Entity types with every referenced type before its referrers."""
        return list(self._order)

    def deletion_order(self) -> list[EntityType]:
        """Entity types with every referrer before the type it references."""
        return list(reversed(self._order))

    # =========================================================================
    # Family Scoping
    # =========================================================================

    def scoped_ids(self, name: str, family_id: str) -> Select:
        """SELECT of the ids of ``name`` rows belonging to the family."""
        entity = self.get(name)
        return select(entity.table.c.id).where(self.scope_clause(name, family_id))

    def scope_clause(self, name: str, family_id: str) -> ColumnElement[bool]:
        """WHERE predicate restricting the entity's table to one family."""
        entity = self.get(name)
        table = entity.table
        if entity.root:
            return table.c.id == family_id
        if entity.scope_column is not None:
            return table.c[entity.scope_column] == family_id
        if entity.parent is not None:
            return table.c[entity.parent.column].in_(
                self.scoped_ids(entity.parent.target, family_id)
            )
        raise ValueError(f"Entity type {name} has no family scope")


def _ref(column: str, target: str = "members", nullable: bool = False) -> Reference:
    return Reference(column=column, target=target, nullable=nullable)


FAMILY_ENTITIES: list[EntityType] = [
    EntityType(
        name="families",
        table=tables.families,
        scope_column=None,
        root=True,
        references=(Reference("created_by", "members", nullable=True, deferred=True),),
        columns=("name", "description", "settings", "created_at"),
    ),
    EntityType(
        name="members",
        table=tables.family_members,
        erase_key="memberships",
    ),
    EntityType(
        name="posts",
        table=tables.posts,
        references=(_ref("author_id"),),
        columns=("post_type", "title", "body", "visibility", "created_at"),
    ),
    EntityType(
        name="media_items",
        table=tables.media_items,
        references=(_ref("uploaded_by"),),
        columns=(
            "file_name", "mime_type", "file_size", "storage_path",
            "checksum_sha256", "is_deleted", "created_at",
        ),
    ),
    EntityType(
        name="media_variants",
        table=tables.media_variants,
        scope_column=None,
        parent=_ref("media_item_id", "media_items"),
        columns=(
            "variant_type", "storage_path", "mime_type", "file_size",
            "width", "height", "created_at",
        ),
    ),
    EntityType(
        name="events",
        table=tables.events,
        references=(_ref("created_by"),),
        columns=(
            "title", "description", "start_at", "end_at",
            "all_day", "location", "created_at",
        ),
    ),
    EntityType(
        name="recipes",
        table=tables.recipes,
        references=(
            _ref("created_by"),
            _ref("cover_image_id", "media_items", nullable=True),
        ),
        columns=("title", "description", "servings", "created_at"),
    ),
    EntityType(
        name="conversations",
        table=tables.conversations,
        references=(_ref("created_by"),),
        columns=("type", "title", "created_at"),
    ),
    EntityType(
        name="messages",
        table=tables.messages,
        scope_column=None,
        parent=_ref("conversation_id", "conversations"),
        references=(
            _ref("sender_id"),
            _ref("reply_to_id", "messages", nullable=True),
            _ref("media_id", "media_items", nullable=True),
        ),
        columns=("content", "message_type", "created_at"),
    ),
    EntityType(
        name="vaults",
        table=tables.legacy_vaults,
        references=(_ref("owner_id"),),
        columns=("title", "description", "status", "release_condition", "created_at"),
    ),
    EntityType(
        name="vault_items",
        table=tables.vault_items,
        scope_column=None,
        parent=_ref("vault_id", "vaults"),
        references=(_ref("media_id", "media_items", nullable=True),),
        columns=("content_type", "title", "content", "sort_order", "created_at"),
    ),
    EntityType(
        name="relationships",
        table=tables.relationships,
        references=(_ref("from_user_id"), _ref("to_user_id")),
        columns=("relationship_type", "created_at"),
    ),
    EntityType(
        name="audit_events",
        table=tables.audit_events,
        references=(_ref("actor_id", nullable=True),),
        columns=("event_type", "subject_id", "subject_type", "payload", "created_at"),
    ),
]

FAMILY_GRAPH = EntityGraph(FAMILY_ENTITIES)


def entity_names(entities: Iterable[EntityType]) -> list[str]:
    return [entity.name for entity in entities]
