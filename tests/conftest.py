"""Shared pytest fixtures for all tests."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote

import httpx
import pytest

from couch.client import CouchServer


class FakeCouch:
    """
    In-memory stand-in for a CouchDB server, served through httpx.MockTransport.

    Attributes:
        dbs: Documents per database, keyed by id
        writes: Every successful document write as (db, doc_id)
        creates: Every successful database creation as (db, params)
        race_on_create: Databases another process "creates" just before our PUT
        fail: Status codes to answer with, keyed by (method, path)
        on_request: Called with (method, path) before each request is answered
    """

    def __init__(self, user: Optional[str] = 'admin'):
        self.user = user
        self.dbs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.changes: Dict[str, List[Dict[str, Any]]] = {}
        self.writes: List[Tuple[str, str]] = []
        self.creates: List[Tuple[str, Dict[str, str]]] = []
        self.race_on_create: Set[str] = set()
        self.fail: Dict[Tuple[str, str], int] = {}
        self.requests: List[Tuple[str, str]] = []
        self.on_request: Optional[Callable[[str, str], None]] = None

    def add_database(self, name: str) -> None:
        self.dbs.setdefault(name, {})
        self.changes.setdefault(name, [])

    def put_document(self, db: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Store a document directly, as another writer would."""
        self.add_database(db)
        doc_id = doc['_id']
        current = self.dbs[db].get(doc_id)
        generation = int(current['_rev'].split('-')[0]) + 1 if current else 1
        stored = {**{k: v for k, v in doc.items() if k != '_rev'}, '_rev': f"{generation}-fake"}
        self.dbs[db][doc_id] = stored
        self.changes[db].append({'id': doc_id, 'seq': str(len(self.changes[db]) + 1), 'doc': stored})
        return stored

    def docs(self, db: str) -> Dict[str, Dict[str, Any]]:
        return self.dbs.get(db, {})

    def _json(self, status: int, body: Any) -> httpx.Response:
        return httpx.Response(status, json=body)

    def _not_found(self, reason: str = 'missing') -> httpx.Response:
        return self._json(404, {'error': 'not_found', 'reason': reason})

    async def handle(self, request: httpx.Request) -> httpx.Response:
        # Yield so concurrent requests interleave the way real I/O would.
        await asyncio.sleep(0)

        raw_path = request.url.raw_path.decode('ascii').split('?')[0]
        segments = [unquote(s) for s in raw_path.strip('/').split('/') if s]
        method = request.method
        path = '/' + '/'.join(segments)
        self.requests.append((method, path))
        if self.on_request is not None:
            self.on_request(method, path)

        if (method, path) in self.fail:
            return self._json(self.fail[(method, path)], {'error': 'injected', 'reason': 'test failure'})

        if segments == ['_session']:
            return self._json(200, {'ok': True, 'userCtx': {'name': self.user, 'roles': ['_admin']}})
        if segments == ['_all_dbs']:
            return self._json(200, sorted(self.dbs))

        db = segments[0]
        if len(segments) == 1:
            return self._handle_database(method, db, request)
        if segments[1] == '_changes':
            return await self._handle_changes(db, request)
        return self._handle_document(method, db, '/'.join(segments[1:]), request)

    def _handle_database(self, method: str, db: str, request: httpx.Request) -> httpx.Response:
        if method == 'GET':
            if db not in self.dbs:
                return self._not_found('Database does not exist.')
            return self._json(200, {'db_name': db, 'update_seq': str(len(self.changes[db]))})
        if method == 'PUT':
            if db in self.race_on_create:
                self.race_on_create.discard(db)
                self.add_database(db)
            if db in self.dbs:
                return self._json(412, {'error': 'file_exists', 'reason': 'The database could not be created, the file already exists.'})
            self.add_database(db)
            self.creates.append((db, dict(request.url.params)))
            return self._json(201, {'ok': True})
        return self._json(405, {'error': 'method_not_allowed'})

    async def _handle_changes(self, db: str, request: httpx.Request) -> httpx.Response:
        if db not in self.dbs:
            return self._not_found('Database does not exist.')
        since = int(request.url.params.get('since') or 0)
        results = self.changes[db][since:]
        if not results and request.url.params.get('feed') == 'longpoll':
            await asyncio.sleep(0.01)
            results = self.changes[db][since:]
        return self._json(200, {'results': results, 'last_seq': str(since + len(results))})

    def _handle_document(self, method: str, db: str, doc_id: str, request: httpx.Request) -> httpx.Response:
        if db not in self.dbs:
            return self._not_found('Database does not exist.')
        current = self.dbs[db].get(doc_id)

        if method == 'GET':
            if current is None:
                return self._not_found()
            return self._json(200, current)

        if method == 'PUT':
            body = json.loads(request.content)
            rev: Optional[str] = body.get('_rev')
            current_rev = current['_rev'] if current else None
            if rev != current_rev:
                return self._json(409, {'error': 'conflict', 'reason': 'Document update conflict.'})
            stored = self.put_document(db, {**body, '_id': doc_id})
            self.writes.append((db, doc_id))
            return self._json(201, {'ok': True, 'id': doc_id, 'rev': stored['_rev']})

        return self._json(405, {'error': 'method_not_allowed'})


@pytest.fixture
def fake_couch():
    """
    Create an empty fake CouchDB server.

    Returns:
        FakeCouch instance
    """
    return FakeCouch()


@pytest.fixture
def couch_server(fake_couch):
    """
    Create a CouchServer talking to the fake through a mock transport.

    Args:
        fake_couch: FakeCouch fixture

    Returns:
        CouchServer instance
    """
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_couch.handle),
        base_url='http://couch.test'
    )
    return CouchServer('http://couch.test', client=client)


@pytest.fixture
def status_log():
    """Collects status messages passed to the log hook."""
    messages: List[str] = []
    return messages
