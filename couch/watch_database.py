"""
Change-feed watcher.

Follows a database's longpoll ``_changes`` feed in a background task and
routes each change to the synced document with the same id and to an
optional change callback.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from common.cleanup import CleanupHandle
from common.constants import WATCH_LONGPOLL_TIMEOUT_MS, WATCH_RETRY_DELAY_SECONDS
from common.logging_config import get_logger
from couch.client import CouchDatabase
from couch.synced_document import SyncedDocument

logger = get_logger(__name__)

ChangeCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[BaseException], None]


class DatabaseWatcher(CleanupHandle):
    """
    Background task following one database's changes feed.

    Transport and HTTP errors are handed to ``on_error`` and the loop
    retries after ``retry_delay`` seconds. Only ``close()``/``stop()``
    ends the loop.
    """

    def __init__(
        self,
        db: CouchDatabase,
        synced_documents: Iterable[SyncedDocument] = (),
        on_change: Optional[ChangeCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        since: Optional[str] = None,
        longpoll_timeout_ms: int = WATCH_LONGPOLL_TIMEOUT_MS,
        retry_delay: float = WATCH_RETRY_DELAY_SECONDS
    ):
        super().__init__()
        self.db = db
        self.documents: Dict[str, SyncedDocument] = {doc.id: doc for doc in synced_documents}
        self.on_change = on_change
        self.on_error = on_error or self._log_error
        self.since = since
        self.longpoll_timeout_ms = longpoll_timeout_ms
        self.retry_delay = retry_delay
        self.task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the watch task."""
        if self.task is not None:
            logger.warning(f"Watcher for \"{self.db.name}\" already running")
            return
        self.task = asyncio.create_task(self._watch_loop())
        logger.info(f"Watching database \"{self.db.name}\" [since={self.since}]")

    async def stop(self) -> None:
        """Stop the watch task and wait for it to finish."""
        self.close()
        if self.task:
            try:
                await self.task
            except asyncio.CancelledError:
                pass

    def _close(self) -> None:
        if self.task and not self.task.done():
            self.task.cancel()
        logger.info(f"Stopped watching database \"{self.db.name}\"")

    def _log_error(self, error: BaseException) -> None:
        logger.error(f"Error while watching database \"{self.db.name}\": {error}")

    async def _watch_loop(self) -> None:
        """Poll the changes feed until cancelled."""
        while not self.closed:
            try:
                result = await self.db.changes(
                    since=self.since,
                    feed='longpoll',
                    timeout_ms=self.longpoll_timeout_ms,
                    include_docs=True
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.on_error(e)
                await asyncio.sleep(self.retry_delay)
                continue

            for change in result.get('results', []):
                await self._dispatch(change)
            self.since = result.get('last_seq', self.since)

    async def _dispatch(self, change: Dict[str, Any]) -> None:
        """
        Deliver one change to its synced document and the change callback.

        Args:
            change: A row from the changes feed ({id, seq, doc, deleted?})
        """
        document = self.documents.get(change.get('id'))
        if document is not None:
            document.handle_change(change.get('doc'))

        if self.on_change is None:
            return
        try:
            result = self.on_change(change)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.on_error(e)


async def watch_database(
    db: CouchDatabase,
    on_change: Optional[ChangeCallback] = None,
    on_error: Optional[ErrorCallback] = None,
    synced_documents: Iterable[SyncedDocument] = (),
    **watcher_options
) -> DatabaseWatcher:
    """
    Sync every document once, then follow the changes feed.

    The feed starts at the database's update sequence as read before the
    initial sync, so nothing written during the sync is missed.

    Args:
        db: Database to watch
        on_change: Called for every change row
        on_error: Called for failures inside the background task
        synced_documents: Documents to keep up to date
        **watcher_options: Passed through to DatabaseWatcher

    Returns:
        Running watcher; close it to stop watching
    """
    synced_documents = list(synced_documents)
    info = await db.info()
    since = info.get('update_seq')

    await asyncio.gather(*(doc.sync(db) for doc in synced_documents))

    watcher = DatabaseWatcher(
        db,
        synced_documents=synced_documents,
        on_change=on_change,
        on_error=on_error,
        since=since,
        **watcher_options
    )
    watcher.start()
    return watcher
