"""
snapd REST client.

Speaks the snapd JSON API over its unix socket. Requests are plain
blocking http.client calls, run in a worker thread so they never stall the
event loop.

Response envelope:
    {"type": "sync",  "status-code": 200, "result": {...}}
    {"type": "async", "status-code": 202, "change": "42"}
    {"type": "error", "status-code": 404, "result": {"kind": "...", "message": "..."}}
"""

import asyncio
import http.client
import json
import logging
import socket
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote, urlencode

from ..core import config
from ..core.errors import DaemonError
from ..core.models import CatalogInfo, ChangeRecord, LocalInfo, Lookup
from .client import DaemonClient

logger = logging.getLogger(__name__)


class UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection over a unix domain socket."""

    def __init__(self, socket_path: Path, timeout: float):
        super().__init__('localhost', timeout=timeout)
        self.socket_path = str(socket_path)

    def connect(self):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class SnapdClient(DaemonClient):
    """DaemonClient backed by the snapd REST API."""

    def __init__(self, socket_path: Path = None, timeout: float = None,
                 poll_interval: float = None):
        """Initialize snapd client.

        Args:
            socket_path: snapd socket (default: from config)
            timeout: Per-request socket timeout in seconds (default: from config)
            poll_interval: Seconds between change polls (default: from config)
        """
        self.socket_path = socket_path or config.get_socket_path()
        self.timeout = timeout if timeout is not None else config.get_timeout()
        self.poll_interval = (poll_interval if poll_interval is not None
                              else config.get_poll_interval())

    # =========================================================================
    # Transport
    # =========================================================================

    def _request_sync(self, method: str, path: str,
                      body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request and return the decoded response envelope."""
        conn = UnixHTTPConnection(self.socket_path, self.timeout)
        try:
            headers = {'Accept': 'application/json'}
            payload = None
            if body is not None:
                payload = json.dumps(body).encode('utf-8')
                headers['Content-Type'] = 'application/json'
            conn.request(method, path, body=payload, headers=headers)
            response = conn.getresponse()
            raw = response.read()
            status = response.status
        except (OSError, http.client.HTTPException) as e:
            raise DaemonError(f"Cannot reach snapd at {self.socket_path}: {e}") from e
        finally:
            conn.close()

        try:
            data = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DaemonError(f"Invalid response from snapd for {path}: {e}",
                              status_code=status) from e

        if data.get('type') == 'error' or status >= 400:
            result = data.get('result') or {}
            raise DaemonError(
                result.get('message') or f"snapd returned HTTP {status}",
                kind=result.get('kind'),
                status_code=data.get('status-code', status),
            )
        return data

    async def _request(self, method: str, path: str,
                       body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        logger.debug(f"snapd {method} {path}")
        return await asyncio.to_thread(self._request_sync, method, path, body)

    async def _lookup(self, path: str, parse) -> Lookup:
        try:
            data = await self._request('GET', path)
        except DaemonError as e:
            if e.is_not_found:
                return Lookup.not_found()
            return Lookup.failed(e)
        result = data.get('result')
        if isinstance(result, list):
            if not result:
                return Lookup.not_found()
            result = result[0]
        return Lookup.found(parse(result))

    async def _snap_action(self, name: str, action: str, **options) -> str:
        body = {'action': action}
        body.update(options)
        data = await self._request('POST', f"/v2/snaps/{quote(name)}", body)
        change_id = data.get('change')
        if not change_id:
            raise DaemonError(f"snapd did not return a change for {action} {name}")
        logger.info(f"snapd accepted {action} of {name} as change {change_id}")
        return str(change_id)

    # =========================================================================
    # DaemonClient
    # =========================================================================

    async def get_local_info(self, name: str) -> Lookup[LocalInfo]:
        return await self._lookup(f"/v2/snaps/{quote(name)}", LocalInfo.from_dict)

    async def get_catalog_info(self, name: str) -> Lookup[CatalogInfo]:
        query = urlencode({'name': name})
        return await self._lookup(f"/v2/find?{query}", CatalogInfo.from_dict)

    async def list_changes(self, name: str) -> List[ChangeRecord]:
        query = urlencode({'for': name, 'select': 'all'})
        data = await self._request('GET', f"/v2/changes?{query}")
        return [ChangeRecord.from_dict(c) for c in data.get('result') or []]

    async def list_installed(self) -> List[LocalInfo]:
        data = await self._request('GET', "/v2/snaps")
        return [LocalInfo.from_dict(s) for s in data.get('result') or []]

    async def list_refreshable(self) -> List[str]:
        try:
            data = await self._request('GET', "/v2/find?select=refresh")
        except DaemonError as e:
            # snapd answers "no updates" with a not-found error
            if e.is_not_found:
                return []
            raise
        return [s['name'] for s in data.get('result') or []]

    async def install(self, name: str, channel: str, classic: bool) -> str:
        return await self._snap_action(name, 'install', channel=channel,
                                       classic=classic)

    async def refresh(self, name: str, channel: str, classic: bool) -> str:
        return await self._snap_action(name, 'refresh', channel=channel,
                                       classic=classic)

    async def remove(self, name: str) -> str:
        return await self._snap_action(name, 'remove')

    async def abort_change(self, change_id: str) -> ChangeRecord:
        data = await self._request('POST', f"/v2/changes/{quote(change_id)}",
                                   {'action': 'abort'})
        return ChangeRecord.from_dict(data['result'])

    async def get_change(self, change_id: str) -> ChangeRecord:
        data = await self._request('GET', f"/v2/changes/{quote(change_id)}")
        return ChangeRecord.from_dict(data['result'])

    async def watch_change(self, change_id: str) -> AsyncIterator[ChangeRecord]:
        """Poll a change, yielding each distinct snapshot until it is ready."""
        last = None
        while True:
            change = await self.get_change(change_id)
            if change != last:
                yield change
                last = change
            if change.ready:
                return
            await asyncio.sleep(self.poll_interval)
