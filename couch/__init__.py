"""CouchDB driver and document helpers."""

from couch.client import CouchDatabase, CouchServer
from couch.synced_document import SyncedDocument
from couch.watch_database import DatabaseWatcher, watch_database

__all__ = [
    "CouchDatabase",
    "CouchServer",
    "DatabaseWatcher",
    "SyncedDocument",
    "watch_database",
]
