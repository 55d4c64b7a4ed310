"""Single-writer store for the scene document.

All mutations go through dispatch() as small id-keyed actions, so results that
arrive out of order (concurrent plate generation, for example) only touch
their own entity. Patching or removing an id that no longer exists is a
no-op: a late result for discarded state is dropped, not an error.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from models.scene import SceneDocument

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Id-keyed collections inside the scene document."""

    CHARACTERS = "characters"
    ENVIRONMENTS = "environments"
    MOTIFS = "motifs"
    FRAMES = "frames"


class DuplicateEntityError(Exception):
    """Raised when inserting an entity whose id already exists."""

    pass


@dataclass(frozen=True)
class UpdateScene:
    """Set top-level scene fields (title, location, script, genre, sentiment_data)."""

    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplaceCollection:
    collection: Collection
    items: tuple = ()


@dataclass(frozen=True)
class InsertEntity:
    collection: Collection
    item: Any


@dataclass(frozen=True)
class PatchEntity:
    collection: Collection
    entity_id: str
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveEntity:
    collection: Collection
    entity_id: str


SceneAction = UpdateScene | ReplaceCollection | InsertEntity | PatchEntity | RemoveEntity

SCENE_FIELDS = {"title", "location", "script", "genre", "sentiment_data"}


def _get_items(document: SceneDocument, collection: Collection) -> list:
    if collection == Collection.FRAMES:
        return document.frames
    return getattr(document.manifest, collection.value)


def _with_items(document: SceneDocument, collection: Collection, items: list) -> SceneDocument:
    if collection == Collection.FRAMES:
        return dataclasses.replace(document, frames=items)
    manifest = dataclasses.replace(document.manifest, **{collection.value: items})
    return dataclasses.replace(document, manifest=manifest)


def reduce(document: SceneDocument, action: SceneAction) -> SceneDocument:
    """Apply one action and return the new document. Never mutates the input."""
    if isinstance(action, UpdateScene):
        unknown = set(action.changes) - SCENE_FIELDS
        if unknown:
            raise ValueError(f"Unknown scene fields: {sorted(unknown)}")
        return dataclasses.replace(document, **action.changes)

    if isinstance(action, ReplaceCollection):
        items = list(action.items)
        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            raise DuplicateEntityError(f"Duplicate ids in {action.collection.value}")
        return _with_items(document, action.collection, items)

    items = _get_items(document, action.collection)

    if isinstance(action, InsertEntity):
        if any(item.id == action.item.id for item in items):
            raise DuplicateEntityError(
                f"{action.collection.value} already contains {action.item.id}"
            )
        return _with_items(document, action.collection, [*items, action.item])

    if isinstance(action, PatchEntity):
        if not any(item.id == action.entity_id for item in items):
            logger.debug(f"Ignoring patch for missing {action.collection.value} {action.entity_id}")
            return document
        patched = [
            dataclasses.replace(item, **action.changes) if item.id == action.entity_id else item
            for item in items
        ]
        return _with_items(document, action.collection, patched)

    if isinstance(action, RemoveEntity):
        remaining = [item for item in items if item.id != action.entity_id]
        if len(remaining) == len(items):
            logger.debug(f"Ignoring removal of missing {action.collection.value} {action.entity_id}")
            return document
        return _with_items(document, action.collection, remaining)

    raise TypeError(f"Unknown scene action: {type(action).__name__}")


class SceneStore:
    """Owns the scene document and is its only writer."""

    def __init__(self, document: SceneDocument | None = None):
        self._document = document or SceneDocument()
        self._listeners: list[Callable[[SceneDocument, SceneAction], None]] = []

    @property
    def document(self) -> SceneDocument:
        return self._document

    def dispatch(self, action: SceneAction) -> SceneDocument:
        """Apply an action and notify listeners with the new document."""
        self._document = reduce(self._document, action)
        for listener in list(self._listeners):
            try:
                listener(self._document, action)
            except Exception as e:
                logger.error(f"Scene listener failed: {e}")
        return self._document

    def subscribe(self, listener: Callable[[SceneDocument, SceneAction], None]) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Convenience wrappers used by the orchestration layer

    def patch(self, collection: Collection, entity_id: str, **changes) -> SceneDocument:
        return self.dispatch(PatchEntity(collection, entity_id, changes))

    def insert(self, collection: Collection, item) -> SceneDocument:
        return self.dispatch(InsertEntity(collection, item))

    def remove(self, collection: Collection, entity_id: str) -> SceneDocument:
        return self.dispatch(RemoveEntity(collection, entity_id))

    def replace(self, collection: Collection, items) -> SceneDocument:
        return self.dispatch(ReplaceCollection(collection, tuple(items)))

    def update(self, **changes) -> SceneDocument:
        return self.dispatch(UpdateScene(changes))
