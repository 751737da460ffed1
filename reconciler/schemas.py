"""Pydantic schemas for the documents this package reads and writes."""

from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DatabaseCreateOptions(BaseModel):
    """Parameters CouchDB accepts when creating a database."""
    model_config = ConfigDict(extra='allow')

    partitioned: Optional[bool] = None
    q: Optional[int] = None
    n: Optional[int] = None


class ClusterPolicy(BaseModel):
    """
    One cluster's row in the topology document.

    ``include``/``exclude`` hold database-name patterns; ``pullFrom`` and
    ``pushTo`` hold cluster names. A pattern ending in ``*`` matches by
    prefix. Unset lists fall back to defaults when planning.
    """
    model_config = ConfigDict(populate_by_name=True)

    url: str
    basic_auth: Optional[str] = Field(default=None, alias='basicAuth')
    mode: Literal['source', 'target', 'both', 'none'] = 'both'
    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    pull_from: Optional[List[str]] = Field(default=None, alias='pullFrom')
    push_to: Optional[List[str]] = Field(default=None, alias='pushTo')


class ReplicatorSetupDocument(BaseModel):
    """Shared topology document describing every cluster."""
    clusters: Dict[str, ClusterPolicy] = {}


class AuthHeaders(BaseModel):
    """Headers attached to a replication endpoint."""
    Authorization: str


class ReplicatorEndpoint(BaseModel):
    """Replication endpoint carrying credentials."""
    url: str
    headers: AuthHeaders


Endpoint = Union[str, ReplicatorEndpoint]


class ReplicatorDocument(BaseModel):
    """A continuous replication job stored in the _replicator database."""
    continuous: Literal[True] = True
    create_target: bool
    create_target_params: Optional[DatabaseCreateOptions] = None
    owner: Optional[str] = None
    source: Endpoint
    target: Endpoint
