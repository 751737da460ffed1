"""
Replication topology planning.

Each cluster declares its own policy in a shared topology document. This
module works out which continuous replication jobs the current cluster
owns for one database and writes them into the _replicator database.
Jobs are named ``<db>.from.<cluster>`` (pull) and ``<db>.to.<cluster>``
(push), so re-planning against the same topology is a no-op.

Jobs whose edge disappears from the topology are left in place.
"""

import asyncio
from typing import Dict, List, Optional

from common.cleanup import CleanupHandle, NullCleanup
from common.constants import REPLICATOR_DATABASE
from common.logging_config import get_logger
from couch.client import CouchServer
from couch.synced_document import SyncedDocument, dump_document
from reconciler.database import reconcile_database
from reconciler.schemas import (
    AuthHeaders,
    ClusterPolicy,
    DatabaseCreateOptions,
    Endpoint,
    ReplicatorDocument,
    ReplicatorEndpoint,
    ReplicatorSetupDocument,
)
from reconciler.types import DatabaseSetup, SetupOptions

logger = get_logger(__name__)


def includes_name(patterns: List[str], name: str) -> bool:
    """
    Return True if any pattern matches the name.

    A pattern ending in '*' matches every name starting with the rest of
    the pattern. Anything else must match exactly.
    """
    for pattern in patterns:
        if pattern.endswith('*'):
            if name.startswith(pattern[:-1]):
                return True
        elif pattern == name:
            return True
    return False


def default_pull_from(clusters: Dict[str, ClusterPolicy]) -> List[str]:
    """Clusters acting as replication sources."""
    return [name for name, row in clusters.items() if row.mode in ('source', 'both')]


def default_push_to(clusters: Dict[str, ClusterPolicy]) -> List[str]:
    """Clusters acting as replication targets."""
    return [name for name, row in clusters.items() if row.mode in ('target', 'both')]


def make_endpoint(cluster: ClusterPolicy, db_name: str) -> Endpoint:
    """
    Build the URL (with credentials, if any) for a database on a cluster.

    Args:
        cluster: Cluster row from the topology document
        db_name: Database name

    Returns:
        Bare URL string, or a ReplicatorEndpoint carrying basic auth
    """
    base = cluster.url[:-1] if cluster.url.endswith('/') else cluster.url
    url = f"{base}/{db_name}"
    if cluster.basic_auth is None:
        return url
    return ReplicatorEndpoint(
        url=url,
        headers=AuthHeaders(Authorization=f"Basic {cluster.basic_auth}")
    )


def plan_replication_jobs(
    topology: ReplicatorSetupDocument,
    current_cluster: str,
    db_name: str,
    owner: Optional[str],
    create_options: Optional[DatabaseCreateOptions] = None
) -> Dict[str, ReplicatorDocument]:
    """
    Work out the replication jobs the current cluster owns for one database.

    A remote cluster is paired only when the database name passes both
    clusters' include lists and neither cluster's exclude list. Pairing
    yields a pull job if the remote is in ``pullFrom`` and a push job if
    it is in ``pushTo``.

    Args:
        topology: Shared topology document
        current_cluster: Name of the cluster this process talks to
        db_name: Database being replicated
        owner: User name recorded on every job, omitted when None
        create_options: Creation parameters for push targets

    Returns:
        Jobs keyed by document id. Empty if the current cluster is not in the topology.
    """
    clusters = topology.clusters
    current = clusters.get(current_cluster)
    if current is None:
        return {}

    local_include = current.include if current.include is not None else ['*']
    local_exclude = current.exclude if current.exclude is not None else []
    pull_from = current.pull_from if current.pull_from is not None else default_pull_from(clusters)
    push_to = current.push_to if current.push_to is not None else default_push_to(clusters)

    if not includes_name(local_include, db_name) or includes_name(local_exclude, db_name):
        return {}

    jobs: Dict[str, ReplicatorDocument] = {}
    for remote_name, remote in clusters.items():
        if remote_name == current_cluster:
            continue

        remote_include = remote.include if remote.include is not None else ['*']
        remote_exclude = remote.exclude if remote.exclude is not None else []
        if not includes_name(remote_include, db_name):
            continue
        if includes_name(remote_exclude, db_name):
            continue

        if includes_name(pull_from, remote_name):
            jobs[f"{db_name}.from.{remote_name}"] = ReplicatorDocument(
                create_target=False,
                owner=owner,
                source=make_endpoint(remote, db_name),
                target=make_endpoint(current, db_name)
            )

        if includes_name(push_to, remote_name):
            jobs[f"{db_name}.to.{remote_name}"] = ReplicatorDocument(
                create_target=True,
                create_target_params=create_options,
                owner=owner,
                source=make_endpoint(current, db_name),
                target=make_endpoint(remote, db_name)
            )

    return jobs


class TopologySubscription(CleanupHandle):
    """
    Re-plans replication whenever the topology document changes.

    At most one planning task runs at a time. Changes arriving while a
    task runs are folded into one more pass with the latest topology.
    Failures go to ``on_error`` and never reach the caller.
    """

    def __init__(self, replicator_setup: SyncedDocument, replan, on_error):
        super().__init__()
        self.replicator_setup = replicator_setup
        self._replan = replan
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._pending = False
        self._listener = replicator_setup.on_change(self._schedule)

    async def run_first_pass(self) -> None:
        """
        Plan once and wait for it, as the subscription's running task.

        Changes arriving meanwhile are folded into one follow-up pass.
        Errors from this pass propagate to the caller.
        """
        self._pending = False
        self._task = asyncio.create_task(self._replan())
        await self._task
        if self._pending and not self.closed:
            self._task = asyncio.create_task(self._run())

    def _schedule(self, _topology: ReplicatorSetupDocument) -> None:
        if self.closed:
            return
        if self._task is not None and not self._task.done():
            self._pending = True
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._pending = False
            try:
                await self._replan()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._on_error(e)
            if not self._pending or self.closed:
                return

    def _close(self) -> None:
        self._listener.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()


async def reconcile_replication(
    server: CouchServer,
    setup: DatabaseSetup,
    options: Optional[SetupOptions] = None
) -> CleanupHandle:
    """
    Write this cluster's replication jobs for a database, and keep them current.

    Does nothing unless the options name both a topology document and a
    current cluster, or when the database is marked ``ignore_missing``.
    The first planning pass completes before this returns; later passes
    run in the background whenever the topology changes.

    Args:
        server: CouchDB server
        setup: Database being replicated
        options: Must carry current_cluster and replicator_setup

    Returns:
        Handle ending the topology subscription
    """
    options = options or SetupOptions()
    replicator_setup = options.replicator_setup
    current_cluster = options.current_cluster
    if replicator_setup is None or current_cluster is None or setup.ignore_missing:
        return NullCleanup()

    session_info = await server.session()
    # None on a server without admins; the job is then written without an owner.
    owner: Optional[str] = session_info['userCtx'].get('name')

    # The nested setup carries no topology, so it can never replicate.
    inner_options = SetupOptions(
        disable_watching=options.disable_watching,
        log=options.log,
        on_error=options.on_error
    )

    async def replan() -> None:
        if current_cluster not in replicator_setup.doc.clusters:
            logger.debug(f"Cluster {current_cluster} is not in the topology, skipping replication")
            return
        jobs = plan_replication_jobs(
            replicator_setup.doc, current_cluster, setup.name, owner, setup.options
        )
        logger.debug(
            f"Planned {len(jobs)} replication job(s) for \"{setup.name}\" on cluster {current_cluster}"
        )
        await reconcile_database(
            server,
            DatabaseSetup(
                name=REPLICATOR_DATABASE,
                documents={job_id: dump_document(job) for job_id, job in jobs.items()}
            ),
            inner_options
        )

    subscription = TopologySubscription(
        replicator_setup, replan, options.get_on_error(setup.name)
    )
    try:
        await subscription.run_first_pass()
    except BaseException:
        subscription.close()
        raise
    return subscription
