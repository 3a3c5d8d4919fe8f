"""
HTTP Relay Client

Talks to a relay exposing a realtime-database style REST surface:

```
GET    /{path}.json                         -> value or null
PUT    /{path}.json      body: value        -> value
POST   /{path}.json      body: value        -> {"name": <push key>}
DELETE /{path}.json                         -> null
GET    /{path}.json  Accept: text/event-stream
       event: put    data: {"path": "/", "data": <value>}
       event: patch  data: {"path": "/x", "data": {...}}
       event: keep-alive
```

The bundled server (tahta.api.rest) implements exactly this; hosted realtime
databases with the same REST dialect work as well.
"""

import asyncio
import copy
import json
import logging
from typing import Any, Dict, Optional, Set

import httpx

from .relay import ErrorCallback, Relay, Subscription, ValueCallback, split_path
from ..errors import RelayReadError, RelayWriteError

logger = logging.getLogger(__name__)


def apply_event(snapshot: Any, path: str, data: Any, merge: bool = False) -> Any:
    """
    Apply one streamed put/patch event to a local snapshot.

    Args:
        snapshot: Current value at the watched path
        path: Event path relative to the watched path ("/" for the whole value)
        data: New value (put) or children to merge (patch); None deletes
        merge: True for patch events

    Returns:
        The updated snapshot (may be a new object)
    """
    segments = split_path(path)

    if not segments and not merge:
        return copy.deepcopy(data)

    # patch merges into the node at `path`, put replaces the child named by it
    parents = segments if merge else segments[:-1]

    root = snapshot if isinstance(snapshot, dict) else {}
    node = root
    for segment in parents:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child

    if merge:
        for key, value in (data or {}).items():
            if value is None:
                node.pop(key, None)
            else:
                node[key] = copy.deepcopy(value)
    elif data is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = copy.deepcopy(data)

    return root or None


class HttpRelay(Relay):
    """
    Relay client over HTTP using httpx.

    Writes and reads are single requests; watch() holds one server-sent
    event stream per subscription in a background task.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._streams: Dict[Subscription, asyncio.Task] = {}
        self._closed = False

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{'/'.join(split_path(path))}.json"

    async def _request(self, method: str, path: str, write: bool, body: Any = None) -> Any:
        error_cls = RelayWriteError if write else RelayReadError
        kwargs = {} if body is None else {'content': json.dumps(body),
                                          'headers': {'Content-Type': 'application/json'}}
        try:
            response = await self._client.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise error_cls(f"{method} {path} returned {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise error_cls(f"{method} {path} returned invalid JSON") from e

    # === Relay interface ===

    async def get(self, path: str) -> Any:
        return await self._request('GET', path, write=False)

    async def set(self, path: str, value: Any):
        await self._request('PUT', path, write=True, body=value)

    async def push(self, path: str, value: Any) -> str:
        result = await self._request('POST', path, write=True, body=value)
        if not isinstance(result, dict) or 'name' not in result:
            raise RelayWriteError(f"POST {path} did not return a key")
        return result['name']

    async def remove(self, path: str):
        await self._request('DELETE', path, write=True)

    def watch(self, path: str, callback: ValueCallback,
              on_error: Optional[ErrorCallback] = None) -> Subscription:
        subscription = Subscription(path, callback, on_error, self._stop_stream)
        task = asyncio.get_running_loop().create_task(self._stream(subscription))
        self._streams[subscription] = task
        return subscription

    def _stop_stream(self, subscription: Subscription):
        task = self._streams.pop(subscription, None)
        if task and not task.done():
            task.cancel()

    async def _stream(self, subscription: Subscription):
        """Follow the event stream for one subscription until cancelled."""
        url = self._url(subscription.path)
        headers = {'Accept': 'text/event-stream'}
        snapshot: Any = None

        try:
            async with self._client.stream('GET', url, headers=headers,
                                           timeout=httpx.Timeout(None, connect=10.0)) as response:
                if response.status_code >= 400:
                    raise RelayReadError(f"Watching {subscription.path} returned {response.status_code}")

                event, data_lines = None, []
                async for line in response.aiter_lines():
                    if line.startswith('event:'):
                        event = line[6:].strip()
                    elif line.startswith('data:'):
                        data_lines.append(line[5:].strip())
                    elif not line:
                        snapshot = self._dispatch(subscription, snapshot, event, '\n'.join(data_lines))
                        event, data_lines = None, []

            raise RelayReadError(f"Event stream for {subscription.path} ended")

        except asyncio.CancelledError:
            raise
        except RelayReadError as e:
            subscription.fail(e)
        except (httpx.HTTPError, ValueError) as e:
            subscription.fail(RelayReadError(f"Watching {subscription.path} failed: {e}"))
        finally:
            self._streams.pop(subscription, None)

    def _dispatch(self, subscription: Subscription, snapshot: Any,
                  event: Optional[str], raw: str) -> Any:
        if event in ('put', 'patch'):
            payload = json.loads(raw)
            snapshot = apply_event(snapshot, payload.get('path', '/'), payload.get('data'),
                                   merge=(event == 'patch'))
            subscription.deliver(copy.deepcopy(snapshot))
        elif event in ('cancel', 'auth_revoked'):
            raise RelayReadError(f"Relay cancelled stream for {subscription.path}: {event}")
        return snapshot

    async def close(self):
        if self._closed:
            return
        self._closed = True

        tasks: Set[asyncio.Task] = set(self._streams.values())
        for subscription in list(self._streams):
            subscription.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._owns_client:
            await self._client.aclose()
