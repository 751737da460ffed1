"""Async HTTP client for the CouchDB server and database APIs."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from common.constants import COUCH_TIMEOUT_SECONDS
from common.logging_config import get_logger
from couch.exceptions import (
    ConflictError,
    CouchConnectionError,
    CouchHTTPError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
)

logger = get_logger(__name__)

_STATUS_ERRORS = {
    401: UnauthorizedError,
    403: UnauthorizedError,
    404: NotFoundError,
    409: ConflictError,
    412: PreconditionFailedError,
}


def split_credentials(url: str) -> tuple[str, Optional[httpx.BasicAuth]]:
    """
    Pull basic-auth credentials out of a server URL.

    Args:
        url: Server URL, optionally with user-info (https://user:pw@host:5984)

    Returns:
        Tuple of (url_without_credentials, auth or None)
    """
    parts = urlsplit(url)
    if parts.username is None:
        return url.rstrip('/'), None

    netloc = parts.hostname or ''
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    clean = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    auth = httpx.BasicAuth(parts.username, parts.password or '')
    return clean.rstrip('/'), auth


def quote_db_name(name: str) -> str:
    """Quote a database name for use as a single path segment."""
    return quote(name, safe='')


def quote_doc_id(doc_id: str) -> str:
    """Quote a document id, keeping the design/local document prefixes readable."""
    for prefix in ('_design/', '_local/'):
        if doc_id.startswith(prefix):
            return prefix + quote(doc_id[len(prefix):], safe='')
    return quote(doc_id, safe='')


def _encode_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """CouchDB expects JSON-style booleans in query strings."""
    encoded = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = 'true' if value else 'false'
        else:
            encoded[key] = str(value)
    return encoded


def _error_from_response(response: httpx.Response, method: str, path: str) -> CouchHTTPError:
    """
    Map a non-2xx CouchDB response to an exception.

    Args:
        response: Failed HTTP response
        method: HTTP method used
        path: Request path

    Returns:
        Exception instance matching the status code
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    error = body.get('error')
    reason = body.get('reason') or response.text or 'Unknown error'
    exc_class = _STATUS_ERRORS.get(response.status_code, CouchHTTPError)
    return exc_class(
        f"{method} {path} failed with {response.status_code}: {error or 'error'} ({reason})",
        status_code=response.status_code,
        error=error,
        reason=reason
    )


class CouchServer:
    """
    Connection to a CouchDB server.

    Wraps an httpx.AsyncClient. All methods are coroutines and raise the
    exceptions from couch.exceptions on failure.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = COUCH_TIMEOUT_SECONDS
    ):
        """
        Initialize the server connection.

        Args:
            url: Server base URL, credentials may be embedded
            client: Pre-built client (used by tests with a mock transport)
            timeout: Request timeout in seconds
        """
        self.url, auth = split_credentials(url)
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.url,
            auth=auth,
            timeout=timeout,
            headers={'Accept': 'application/json'}
        )
        logger.debug(f"Initialized CouchServer [url={self.url}]")

    async def __aenter__(self) -> 'CouchServer':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this object created it."""
        if self._owns_client:
            await self.client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Send one request and decode the JSON response.

        Args:
            method: HTTP method
            path: Path relative to the server URL, starting with '/'
            params: Query parameters
            json: JSON request body
            timeout: Per-request timeout override in seconds

        Returns:
            Decoded JSON body

        Raises:
            CouchConnectionError: On network failure or timeout
            CouchHTTPError: On any non-2xx response (or a subclass)
        """
        kwargs: Dict[str, Any] = {'params': _encode_params(params)}
        if json is not None:
            kwargs['json'] = json
        if timeout is not None:
            kwargs['timeout'] = timeout

        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise CouchConnectionError(
                f"{method} {path} failed: {type(e).__name__}: {e}"
            ) from e

        logger.debug(f"{method} {path} status={response.status_code}")

        if response.is_error:
            raise _error_from_response(response, method, path)
        return response.json()

    async def get_database_info(self, name: str) -> Dict[str, Any]:
        """Fetch database metadata. Raises NotFoundError if the database is absent."""
        return await self.request('GET', f"/{quote_db_name(name)}")

    async def create_database(self, name: str, options: Optional[Dict[str, Any]] = None) -> None:
        """
        Create a database.

        Args:
            name: Database name
            options: Creation parameters (q, n, partitioned)

        Raises:
            PreconditionFailedError: If the database already exists
        """
        await self.request('PUT', f"/{quote_db_name(name)}", params=options)

    async def list_databases(self) -> List[str]:
        """Return the names of every database on the server."""
        return await self.request('GET', '/_all_dbs')

    async def session(self) -> Dict[str, Any]:
        """Return the current session info, including userCtx.name."""
        return await self.request('GET', '/_session')

    def use(self, name: str) -> 'CouchDatabase':
        """Return a handle for one database. Does not check that it exists."""
        return CouchDatabase(self, name)


class CouchDatabase:
    """Document-level operations on a single database."""

    def __init__(self, server: CouchServer, name: str):
        self.server = server
        self.name = name
        self._path = f"/{quote_db_name(name)}"

    def __repr__(self) -> str:
        return f"CouchDatabase({self.name!r})"

    async def info(self) -> Dict[str, Any]:
        return await self.server.get_database_info(self.name)

    async def get(self, doc_id: str) -> Dict[str, Any]:
        """
        Fetch a document.

        Raises:
            NotFoundError: If the document does not exist or was deleted
        """
        return await self.server.request('GET', f"{self._path}/{quote_doc_id(doc_id)}")

    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write a document at its own ``_id``.

        A ``_rev`` of None is dropped, which makes this a create.

        Args:
            doc: Document body including ``_id``

        Returns:
            CouchDB write result ({ok, id, rev})

        Raises:
            ConflictError: If the revision is stale or the document exists
        """
        body = {key: value for key, value in doc.items() if not (key == '_rev' and value is None)}
        doc_id = body['_id']
        return await self.server.request('PUT', f"{self._path}/{quote_doc_id(doc_id)}", json=body)

    async def changes(
        self,
        since: Optional[str] = None,
        feed: str = 'normal',
        timeout_ms: Optional[int] = None,
        include_docs: bool = True
    ) -> Dict[str, Any]:
        """
        Read the changes feed.

        Args:
            since: Sequence to start after (None for the beginning)
            feed: 'normal' or 'longpoll'
            timeout_ms: Longpoll timeout passed to CouchDB
            include_docs: Include document bodies in the results

        Returns:
            Dict with 'results' and 'last_seq'
        """
        params: Dict[str, Any] = {'feed': feed, 'include_docs': include_docs, 'since': since}
        request_timeout = None
        if timeout_ms is not None:
            params['timeout'] = timeout_ms
            request_timeout = timeout_ms / 1000 + self.server.timeout
        return await self.server.request(
            'GET', f"{self._path}/_changes", params=params, timeout=request_timeout
        )
