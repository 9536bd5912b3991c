"""Server-Sent Events transport for live dashboard snapshots.

The response writes straight to the ASGI ``send`` callable through
``UpdateBroadcaster.serve``, so a write that fails after the client went
away drops the subscriber the same way as any other failed delivery.
"""

import asyncio
from collections.abc import Mapping

import orjson
from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from src.core.logging import get_logger

from .broadcaster import Subscription, UpdateBroadcaster
from .schemas import DashboardSnapshot


logger = get_logger(__name__)

KEEPALIVE_FRAME = b": keepalive\n\n"


def encode_snapshot_event(snapshot: DashboardSnapshot) -> bytes:
    data = orjson.dumps(snapshot.model_dump(mode="json"))
    return b"event: snapshot\ndata: " + data + b"\n\n"


class SnapshotStreamResponse(Response):
    """Streams the initial snapshot, then every snapshot pushed to the subscription.

    Idle periods longer than ``keepalive_seconds`` emit a comment frame. The
    subscription is removed however the stream ends.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        broadcaster: UpdateBroadcaster,
        subscription: Subscription,
        initial: DashboardSnapshot,
        keepalive_seconds: float | None = None,
        headers: Mapping[str, str] | None = None,
        background: BackgroundTask | None = None,
    ) -> None:
        self.broadcaster = broadcaster
        self.subscription = subscription
        self.initial = initial
        self.keepalive_seconds = keepalive_seconds
        self.status_code = 200
        self.background = background
        self.init_headers(
            {"Cache-Control": "no-cache", "X-Accel-Buffering": "no", **(headers or {})}
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        subscriber_id = self.subscription.subscriber_id

        async def send_frame(frame: bytes) -> None:
            await send({"type": "http.response.body", "body": frame, "more_body": True})

        async def send_snapshot(snapshot: DashboardSnapshot) -> None:
            await send_frame(encode_snapshot_event(snapshot))

        async def send_keepalive() -> None:
            await send_frame(KEEPALIVE_FRAME)

        self._disconnected = False
        watcher = asyncio.create_task(self._close_on_disconnect(receive))
        served = False
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
            # A snapshot already in the slot is newer than the initial read
            if self.subscription.pending is None:
                self.subscription.offer(self.initial)
            served = await self.broadcaster.serve(
                self.subscription,
                send_snapshot,
                idle_timeout=self.keepalive_seconds,
                on_idle=send_keepalive,
            )
        finally:
            watcher.cancel()
            self.broadcaster.unsubscribe(subscriber_id)
            logger.info("dashboard_stream_closed", subscriber_id=subscriber_id)

        if served and not self._disconnected:
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        if self.background is not None:
            await self.background()

    async def _close_on_disconnect(self, receive: Receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                self._disconnected = True
                self.broadcaster.unsubscribe(self.subscription.subscriber_id)
                return
