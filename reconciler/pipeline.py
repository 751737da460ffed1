"""Top-level entry point: reconcile a database and its replication in one call."""

from typing import Optional

from common.cleanup import CompositeCleanup
from couch.client import CouchServer
from reconciler.database import reconcile_database
from reconciler.replication import reconcile_replication
from reconciler.types import DatabaseSetup, SetupOptions


async def setup_database(
    server: CouchServer,
    setup: DatabaseSetup,
    options: Optional[SetupOptions] = None
) -> CompositeCleanup:
    """
    Ensure that the requested database exists in CouchDB and stays maintained.

    Runs database reconciliation, then replication planning. If either
    step fails, background work already started is stopped and the error
    propagates.

    Args:
        server: CouchDB server
        setup: Desired state of the database
        options: Cluster, topology, logging and watching options

    Returns:
        One handle that stops every background task when closed
    """
    options = options or SetupOptions()
    cleanup = CompositeCleanup()
    try:
        cleanup.add(await reconcile_database(server, setup, options))
        cleanup.add(await reconcile_replication(server, setup, options))
    except BaseException:
        cleanup.close()
        raise
    return cleanup
