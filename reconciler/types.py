"""Inputs to database setup: what a database should look like and how to maintain it."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from common.logging_config import get_logger
from couch.synced_document import SyncedDocument
from reconciler.schemas import DatabaseCreateOptions, ReplicatorSetupDocument

logger = get_logger('reconciler')


class DatabaseSetup(BaseModel):
    """
    Describes a single CouchDB database that should exist.

    Attributes:
        name: Database name
        options: Creation parameters, also used when replication creates the target
        documents: Documents that must match exactly, by id
        templates: Documents created once if missing, never overwritten
        synced_documents: Documents kept up to date by watching or one-shot sync
        on_change: Called for every row of the database's changes feed
        ignore_missing: Do not create the database if it is missing. This
            also disables replication, since the database may be missing on
            the remote side too.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    options: Optional[DatabaseCreateOptions] = None
    documents: Dict[str, Dict[str, Any]] = {}
    templates: Dict[str, Dict[str, Any]] = {}
    synced_documents: List[SyncedDocument] = []
    on_change: Optional[Callable[..., Any]] = None
    ignore_missing: bool = False


@dataclass
class SetupOptions:
    """
    How setup_database maintains a database.

    Attributes:
        current_cluster: Name of the cluster this client is connected to,
            which enables replicating to or from it
        replicator_setup: Topology document listing every cluster
        disable_watching: Do a one-time sync instead of following the changes feed
        log: Status messages whenever something is written
        on_error: Failures inside background tasks
    """
    current_cluster: Optional[str] = None
    replicator_setup: Optional[SyncedDocument[ReplicatorSetupDocument]] = None
    disable_watching: bool = False
    log: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None

    def get_log(self) -> Callable[[str], None]:
        return self.log or logger.info

    def get_on_error(self, name: str) -> Callable[[BaseException], None]:
        """Return the error callback, defaulting to a log line naming the database."""
        if self.on_error is not None:
            return self.on_error
        log = self.get_log()

        def on_error(error: BaseException) -> None:
            log(f"Error while maintaining database \"{name}\": {error}")

        return on_error
