"""
Documents whose in-memory copy is kept in step with the database.

A SyncedDocument owns a pydantic model describing the document shape and a
default value. ``sync()`` loads it once. The change-feed watcher calls
``handle_change()`` for continuous updates. Listeners registered with
``on_change()`` hear about every change to the parsed value.
"""

from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from common.cleanup import CleanupHandle, FunctionCleanup
from common.logging_config import get_logger
from common.match_json import match_json
from couch.errors import as_maybe_conflict_error, as_maybe_not_found_error

logger = get_logger(__name__)

T = TypeVar('T', bound=BaseModel)


def dump_document(value: BaseModel) -> Dict[str, Any]:
    """Serialize a model the way it is stored in CouchDB."""
    return value.model_dump(mode='json', by_alias=True, exclude_none=True)


def strip_bookkeeping(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Drop CouchDB's _id/_rev fields from a stored document."""
    return {key: value for key, value in raw.items() if key not in ('_id', '_rev')}


class SyncedDocument(Generic[T]):
    """
    A single document mirrored from the database into memory.

    Attributes:
        id: Document id inside its database
        model: Pydantic model the stored document must validate against
        doc: Current parsed value (starts as the default)
        rev: Last revision seen, or None before the first sync
    """

    def __init__(self, doc_id: str, model: Type[T], default: Optional[T] = None):
        self.id = doc_id
        self.model = model
        self.default: T = default if default is not None else model()
        self.doc: T = self.default
        self.rev: Optional[str] = None
        self._listeners: List[Callable[[T], None]] = []

    def __repr__(self) -> str:
        return f"SyncedDocument({self.id!r}, {self.model.__name__})"

    def on_change(self, listener: Callable[[T], None]) -> CleanupHandle:
        """
        Subscribe to value changes.

        Args:
            listener: Called with the new value after every change

        Returns:
            Handle that unsubscribes the listener when closed
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return FunctionCleanup(unsubscribe)

    async def sync(self, db) -> None:
        """
        Load the document from the database once.

        Writes the default when the document is missing, and writes back
        the normalized value when the stored copy is missing fields.

        Args:
            db: CouchDatabase holding this document
        """
        try:
            raw = await db.get(self.id)
        except Exception as e:
            if as_maybe_not_found_error(e) is None:
                raise
            raw = None

        if raw is None:
            try:
                result = await db.insert({'_id': self.id, **dump_document(self.default)})
            except Exception as e:
                # Somebody else created it first; use theirs.
                if as_maybe_conflict_error(e) is None:
                    raise
                self.handle_change(await db.get(self.id))
                return
            logger.info(f"Created default document \"{self.id}\" in database \"{db.name}\"")
            self.rev = result.get('rev')
            self._update(self.default)
            return

        self.handle_change(raw)
        normalized = dump_document(self.doc)
        if self.rev is not None and not match_json(normalized, strip_bookkeeping(raw)):
            try:
                result = await db.insert({'_id': self.id, '_rev': self.rev, **normalized})
            except Exception as e:
                # A newer revision arrived in the meantime; the feed will deliver it.
                if as_maybe_conflict_error(e) is None:
                    raise
                return
            self.rev = result.get('rev')
            logger.info(f"Normalized document \"{self.id}\" in database \"{db.name}\"")

    def handle_change(self, raw: Optional[Dict[str, Any]]) -> None:
        """
        Apply a stored document, as read directly or from the changes feed.

        Invalid or deleted documents leave the current value unchanged.

        Args:
            raw: Stored document including _id/_rev
        """
        if raw is None or raw.get('_deleted'):
            return
        try:
            value = self.model.model_validate(strip_bookkeeping(raw))
        except ValidationError as e:
            logger.warning(f"Ignoring invalid document \"{self.id}\": {e}")
            return
        self.rev = raw.get('_rev', self.rev)
        self._update(value)

    def _update(self, value: T) -> None:
        if self.doc is value or match_json(dump_document(self.doc), dump_document(value)):
            self.doc = value
            return
        self.doc = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Listener for document \"{self.id}\" failed: {e}", exc_info=True)
