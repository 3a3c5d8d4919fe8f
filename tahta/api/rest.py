"""
REST Relay Server

Design Decision: Relay Surface
==============================

Options Considered:
1. WebSocket hub with a custom message set
   - One connection per peer, but a bespoke protocol on both ends
2. Realtime-database style REST + server-sent events
   - Same dialect as hosted realtime databases, so the phone and board can
     point at either this server or a hosted instance
   - Plain HTTP verbs for writes, one event stream per watched path

Decision: Realtime-database style REST over an InMemoryRelay
- GET/PUT/POST/DELETE on /{path}.json
- GET with `Accept: text/event-stream` streams `put` events carrying the
  full value at the path, plus periodic keep-alives

Nothing is persisted: restarting the relay forgets every room.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from ..signaling.relay import InMemoryRelay

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15.0


# === Pydantic Models ===

class PushResponse(BaseModel):
    """Key of a newly appended child."""
    name: str


class RelayStatus(BaseModel):
    """Relay status response."""
    name: str
    version: str
    rooms: int
    subscribers: int


def format_event(event: str, data: Any) -> str:
    """Encode one server-sent event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def relay_events(relay: InMemoryRelay, path: str,
                       keepalive: float = KEEPALIVE_INTERVAL) -> AsyncIterator[str]:
    """
    Yield server-sent events for every change at `path`.

    The first event carries the current value (null if absent). The
    subscription is cancelled when the consumer stops iterating.
    """
    queue: asyncio.Queue = asyncio.Queue()
    subscription = relay.watch(path, queue.put_nowait)
    logger.debug(f"Stream opened for /{path}")
    try:
        while True:
            try:
                value = await asyncio.wait_for(queue.get(), keepalive)
            except asyncio.TimeoutError:
                yield format_event('keep-alive', None)
                continue
            yield format_event('put', {'path': '/', 'data': value})
    finally:
        subscription.cancel()
        logger.debug(f"Stream closed for /{path}")


async def _read_body(request: Request) -> Any:
    try:
        return json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")


# === API Creation ===

def create_app(relay: Optional[InMemoryRelay] = None,
               keepalive: float = KEEPALIVE_INTERVAL) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        relay: Store to serve (a fresh InMemoryRelay if not given)
        keepalive: Seconds between keep-alive events on idle streams

    Returns:
        FastAPI application
    """
    store = relay or InMemoryRelay()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("Relay server starting...")
        yield
        await store.close()
        logger.info("Relay server stopping...")

    app = FastAPI(
        title="Tahta Relay",
        description="Signaling relay for phone/board sessions",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.relay = store

    # === Endpoints ===

    @app.get("/", response_model=RelayStatus, tags=["General"])
    async def root():
        """Relay root - basic info."""
        rooms = store.snapshot() or {}
        return RelayStatus(
            name="Tahta Relay",
            version="1.0.0",
            rooms=sum(len(children) for children in rooms.values() if isinstance(children, dict)),
            subscribers=store.subscriber_count,
        )

    @app.get("/{path:path}.json", tags=["Relay"])
    async def read_value(path: str, request: Request):
        """Read the value at a path, or stream its changes."""
        if 'text/event-stream' in request.headers.get('accept', ''):
            return StreamingResponse(
                relay_events(store, path, keepalive),
                media_type='text/event-stream',
                headers={'Cache-Control': 'no-cache'},
            )
        return JSONResponse(await store.get(path))

    @app.put("/{path:path}.json", tags=["Relay"])
    async def write_value(path: str, request: Request):
        """Replace the value at a path."""
        value = await _read_body(request)
        try:
            await store.set(path, value)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return JSONResponse(value)

    @app.post("/{path:path}.json", response_model=PushResponse, tags=["Relay"])
    async def push_value(path: str, request: Request):
        """Append a child under a generated, time-ordered key."""
        value = await _read_body(request)
        if value is None:
            raise HTTPException(status_code=400, detail="Cannot push null")
        key = await store.push(path, value)
        return PushResponse(name=key)

    @app.delete("/{path:path}.json", tags=["Relay"])
    async def delete_value(path: str):
        """Remove a path and everything below it."""
        await store.remove(path)
        return JSONResponse(None)

    return app


async def run_relay_server(host: str = "0.0.0.0", port: int = 8470,
                           relay: Optional[InMemoryRelay] = None):
    """
    Run the relay server.

    Args:
        host: Host to bind to
        port: Port to listen on
        relay: Store to serve
    """
    import uvicorn

    app = create_app(relay)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
