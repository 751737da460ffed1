"""Declarative database setup and replication topology for CouchDB clusters."""

from reconciler.database import reconcile_database
from reconciler.replication import plan_replication_jobs, reconcile_replication
from reconciler.schemas import (
    ClusterPolicy,
    DatabaseCreateOptions,
    ReplicatorDocument,
    ReplicatorSetupDocument,
)
from reconciler.pipeline import setup_database
from reconciler.types import DatabaseSetup, SetupOptions

__all__ = [
    "ClusterPolicy",
    "DatabaseCreateOptions",
    "DatabaseSetup",
    "ReplicatorDocument",
    "ReplicatorSetupDocument",
    "SetupOptions",
    "plan_replication_jobs",
    "reconcile_database",
    "reconcile_replication",
    "setup_database",
]
