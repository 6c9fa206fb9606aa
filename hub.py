import asyncio
import itertools
import logging
from contextlib import suppress
from enum import Enum
from typing import Dict, List, Optional

from fastapi import WebSocketDisconnect
from pydantic import BaseModel

from errors import DeliveryError, SubscriberConnectionError
from schemas import (
    ClientMessageKind,
    NewReportMessage,
    Report,
    StatsMessage,
    parse_client_message,
)
from store import StateStore

logger = logging.getLogger("broadcast_hub")


class SubscriberState(str, Enum):
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Subscriber:
    """
    One push-channel connection. ``conn`` is anything exposing the
    Starlette WebSocket coroutines: accept, send_text, receive_text, close.
    """
    def __init__(self, conn, subscriber_id: int):
        self.conn = conn
        self.id = subscriber_id
        self.state = SubscriberState.CONNECTING

    async def send(self, payload: str, timeout: Optional[float] = None):
        if self.state != SubscriberState.ACTIVE:
            raise DeliveryError(f"subscriber is {self.state.value}", subscriber_id=self.id)
        try:
            await asyncio.wait_for(self.conn.send_text(payload), timeout)
        except Exception as exc:
            raise DeliveryError(f"send failed: {exc!r}", subscriber_id=self.id) from exc

    async def receive(self) -> str:
        try:
            return await self.conn.receive_text()
        except KeyError as exc:
            # Starlette surfaces a binary frame as a missing "text" key.
            raise SubscriberConnectionError("unsupported binary frame") from exc

    async def close(self):
        if self.state == SubscriberState.CLOSED:
            return
        self.state = SubscriberState.CLOSED
        try:
            await self.conn.close()
        except Exception as exc:
            logger.debug("Closing subscriber %d raised: %s", self.id, exc)


class BroadcastHub:
    """
    Fan-out of store events to every live subscriber.

    Producers only enqueue. A single consumer task drains the queue and
    delivers each event to all active subscribers before taking the next
    one, so every subscriber observes events in enqueue order.
    """
    def __init__(self, store: StateStore, queue_size: int = 0, send_timeout: Optional[float] = 5.0):
        self.store = store
        self.queue_size = max(0, int(queue_size))
        self.send_timeout = send_timeout

        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._consumer: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # --- Lifecycle ---

    async def start(self):
        if self.running:
            return
        # Bind queue and lock to the loop the consumer runs on.
        self._loop = asyncio.get_running_loop()
        self._lock = asyncio.Lock()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._consumer = asyncio.create_task(self._drain(), name="broadcast-hub")
        logger.info("Broadcast hub started.")

    async def stop(self):
        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            await sub.close()
        self._loop = None
        logger.info("Broadcast hub stopped. Closed %d subscribers.", len(subscribers))

    async def flush(self):
        """Wait until every enqueued event has been delivered."""
        await self._queue.join()

    # --- Membership ---

    async def add_subscriber(self, conn) -> Subscriber:
        """Register a connection and send it the current snapshot."""
        sub = conn if isinstance(conn, Subscriber) else Subscriber(conn, next(self._ids))
        async with self._lock:
            sub.state = SubscriberState.ACTIVE
            self._subscribers[sub.id] = sub
            try:
                await sub.send(self._encode(self._snapshot()), self.send_timeout)
            except DeliveryError as exc:
                logger.warning("Initial snapshot to subscriber %d failed: %s", sub.id, exc)
                self._subscribers.pop(sub.id, None)
                await sub.close()
                return sub
            total = len(self._subscribers)
        logger.info("Subscriber %d connected. Total: %d", sub.id, total)
        return sub

    async def remove_subscriber(self, sub: Subscriber):
        async with self._lock:
            removed = self._subscribers.pop(sub.id, None)
            total = len(self._subscribers)
        await sub.close()
        if removed is not None:
            logger.info("Subscriber %d disconnected. Total: %d", sub.id, total)

    # --- Producers ---

    def broadcast_stats(self):
        s = self.store.stats()
        self._enqueue(StatsMessage(
            users_online=s.users_online,
            total_reports=s.total_reports,
            traffic_points=s.traffic_points,
        ))

    def broadcast_new_report(self, report: Report):
        self._enqueue(NewReportMessage(report=report, reports=self.store.recent_reports()))
        self.broadcast_stats()

    # --- Connection handling ---

    async def serve(self, conn):
        """Run one connection from handshake to close."""
        sub = Subscriber(conn, next(self._ids))
        try:
            await conn.accept()
        except Exception as exc:
            sub.state = SubscriberState.CLOSED
            logger.warning("%s", SubscriberConnectionError(f"handshake failed: {exc!r}"))
            return

        await self.add_subscriber(sub)
        try:
            while sub.state == SubscriberState.ACTIVE:
                raw = await sub.receive()
                self.handle_message(sub, raw)
        except WebSocketDisconnect as exc:
            logger.debug("Subscriber %d went away (code %s)", sub.id, exc.code)
        except SubscriberConnectionError as exc:
            logger.warning("Closing subscriber %d: %s", sub.id, exc)
        except RuntimeError as exc:
            # Raised by Starlette when reading a socket the hub already closed.
            logger.debug("Subscriber %d read loop ended: %s", sub.id, exc)
        finally:
            await self.remove_subscriber(sub)

    def handle_message(self, sub: Subscriber, raw: str):
        try:
            msg = parse_client_message(raw)
        except ValueError as exc:
            raise SubscriberConnectionError(f"malformed message: {exc}") from exc

        if msg.kind == ClientMessageKind.PING:
            logger.debug("Ping from subscriber %d", sub.id)
        elif msg.kind == ClientMessageKind.REQUEST_STATS:
            self.broadcast_stats()
        else:
            logger.info("Unknown message type from subscriber %d: %r", sub.id, msg.raw_type)

    # --- Internals ---

    def _snapshot(self) -> StatsMessage:
        s, reports = self.store.snapshot()
        return StatsMessage(
            users_online=s.users_online,
            total_reports=s.total_reports,
            traffic_points=s.traffic_points,
            reports=reports,
        )

    def _encode(self, message: BaseModel) -> str:
        return message.model_dump_json(exclude_none=True)

    def _enqueue(self, message: BaseModel):
        payload = self._encode(message)
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Hub not running; dropping %s event", getattr(message, "type", "?"))
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            self._put(payload)
        else:
            try:
                loop.call_soon_threadsafe(self._put, payload)
            except RuntimeError:
                # Loop closed after the check above
                logger.debug("Hub loop closed; dropping %s event", getattr(message, "type", "?"))

    def _put(self, payload: str):
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Broadcast queue full (%d); dropping event", self.queue_size)

    async def _drain(self):
        while True:
            payload = await self._queue.get()
            try:
                await self._deliver(payload)
            except Exception:
                logger.exception("Unexpected error while broadcasting")
            finally:
                self._queue.task_done()

    async def _deliver(self, payload: str):
        failed: List[Subscriber] = []
        async with self._lock:
            for sub in list(self._subscribers.values()):
                try:
                    await sub.send(payload, self.send_timeout)
                except DeliveryError as exc:
                    logger.warning("Delivery to subscriber %d failed: %s", sub.id, exc)
                    failed.append(sub)
            for sub in failed:
                self._subscribers.pop(sub.id, None)
            total = len(self._subscribers)
        for sub in failed:
            await sub.close()
        if failed:
            logger.info("Dropped %d subscribers after failed delivery. Total: %d", len(failed), total)
