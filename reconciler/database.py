"""
Brings one database to its desired state, without replication.

Steps run in order: make sure the database exists, reconcile exact and
template documents, then either start watching the changes feed or do a
one-time sync of the synced documents.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from common.cleanup import CleanupHandle, NullCleanup
from common.match_json import match_json
from couch.client import CouchDatabase, CouchServer
from couch.errors import as_maybe_exists_error, as_maybe_not_found_error
from couch.synced_document import strip_bookkeeping
from couch.watch_database import watch_database
from reconciler.schemas import DatabaseCreateOptions
from reconciler.types import DatabaseSetup, SetupOptions

Log = Callable[[str], None]


async def ensure_database_exists(
    server: CouchServer,
    name: str,
    options: Optional[DatabaseCreateOptions] = None,
    ignore_missing: bool = False,
    log: Optional[Log] = None
) -> bool:
    """
    Create a database unless it already exists.

    Losing a creation race against another process is fine: CouchDB's
    "file_exists" answer is treated as success.

    Args:
        server: CouchDB server
        name: Database name
        options: Creation parameters
        ignore_missing: Leave a missing database alone
        log: Status callback

    Returns:
        False if the database is missing and was left alone, True otherwise
    """
    try:
        await server.get_database_info(name)
        return True
    except Exception as e:
        if as_maybe_not_found_error(e) is None:
            raise

    if ignore_missing:
        return False

    params = options.model_dump(exclude_none=True) if options is not None else None
    try:
        await server.create_database(name, params)
    except Exception as e:
        if as_maybe_exists_error(e) is None:
            raise
    if log is not None:
        log(f"Created database \"{name}\"")
    return True


async def _get_or_none(db: CouchDatabase, doc_id: str) -> Optional[Dict[str, Any]]:
    try:
        return await db.get(doc_id)
    except Exception as e:
        if as_maybe_not_found_error(e) is None:
            raise
        return None


async def reconcile_document(
    db: CouchDatabase,
    doc_id: str,
    desired: Dict[str, Any],
    log: Optional[Log] = None
) -> bool:
    """
    Make a stored document match ``desired`` exactly, ignoring _id/_rev.

    Returns:
        True if a write happened
    """
    desired = strip_bookkeeping(desired)
    current = await _get_or_none(db, doc_id)
    if current is not None and match_json(desired, strip_bookkeeping(current)):
        return False

    rev = current.get('_rev') if current is not None else None
    await db.insert({'_id': doc_id, '_rev': rev, **desired})
    if log is not None:
        log(f"Wrote document \"{doc_id}\" in database \"{db.name}\".")
    return True


async def create_template_document(
    db: CouchDatabase,
    doc_id: str,
    template: Dict[str, Any],
    log: Optional[Log] = None
) -> bool:
    """
    Write a template document if nothing exists at its id yet.

    Returns:
        True if a write happened
    """
    current = await _get_or_none(db, doc_id)
    if current is not None and current.get('_rev') is not None:
        return False

    await db.insert({'_id': doc_id, **strip_bookkeeping(template)})
    if log is not None:
        log(f"Wrote document \"{doc_id}\" in database \"{db.name}\".")
    return True


async def reconcile_documents(
    db: CouchDatabase,
    documents: Dict[str, Dict[str, Any]],
    templates: Dict[str, Dict[str, Any]],
    log: Optional[Log] = None
) -> int:
    """
    Reconcile exact and template documents.

    Each id is an independent read-then-write. Exact documents are processed
    concurrently, then templates are.

    Args:
        db: Target database
        documents: Exact documents by id
        templates: Template documents by id
        log: Status callback

    Returns:
        Number of documents written
    """
    written = await asyncio.gather(
        *(reconcile_document(db, doc_id, doc, log) for doc_id, doc in documents.items())
    )
    # Templates go second so an id in both maps is settled by the exact write.
    created = await asyncio.gather(
        *(create_template_document(db, doc_id, doc, log) for doc_id, doc in templates.items())
    )
    return sum(1 for result in (*written, *created) if result)


async def dispatch_sync(
    db: CouchDatabase,
    setup: DatabaseSetup,
    disable_watching: bool = False,
    on_error: Optional[Callable[[BaseException], None]] = None
) -> CleanupHandle:
    """
    Keep the synced documents current.

    Watches the changes feed when there is something to watch for, unless
    watching is disabled. Otherwise syncs every document once.

    Returns:
        The watcher, or an inert handle after a one-time sync
    """
    can_watch = setup.on_change is not None or len(setup.synced_documents) > 0
    if can_watch and not disable_watching:
        return await watch_database(
            db,
            on_change=setup.on_change,
            on_error=on_error,
            synced_documents=setup.synced_documents
        )

    await asyncio.gather(*(doc.sync(db) for doc in setup.synced_documents))
    return NullCleanup()


async def reconcile_database(
    server: CouchServer,
    setup: DatabaseSetup,
    options: Optional[SetupOptions] = None
) -> CleanupHandle:
    """
    Create the database if needed, reconcile its documents, and start syncing.

    Args:
        server: CouchDB server
        setup: Desired state of the database
        options: Logging, error and watching options

    Returns:
        Handle stopping any background watch
    """
    options = options or SetupOptions()
    log = options.get_log()

    exists = await ensure_database_exists(
        server, setup.name, setup.options, setup.ignore_missing, log
    )
    if not exists:
        return NullCleanup()

    db = server.use(setup.name)
    await reconcile_documents(db, setup.documents, setup.templates, log)
    return await dispatch_sync(
        db, setup, options.disable_watching, options.get_on_error(setup.name)
    )
