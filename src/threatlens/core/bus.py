"""ZeroMQ notification bus for event-insert fan-out across processes.

Architecture:
  - EventBus: central broker using the XPUB/XSUB proxy pattern
  - NotificationPublisher: the event store announces each insert
  - NotificationSubscriber: correlation services receive inserts and
    schedule a refresh
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import zmq

from threatlens.core.errors import MalformedEventError
from threatlens.core.models import SecurityEvent

logger = logging.getLogger(__name__)

INSERT_TOPIC = "events.inserted"


class EventBus:
    """Central ZeroMQ broker using XSUB/XPUB proxy.

    Publishers connect to pub_port (XSUB side).
    Subscribers connect to sub_port (XPUB side).
    The proxy forwards all messages between them.
    """

    def __init__(self, pub_port: int = 15555, sub_port: int = 15556):
        self._pub_port = pub_port
        self._sub_port = sub_port
        self._context = zmq.Context()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the proxy in a background thread."""
        self._thread = threading.Thread(
            target=self._run_proxy, daemon=True, name="threatlens-bus",
        )
        self._thread.start()
        logger.info("EventBus started (pub=%d, sub=%d)", self._pub_port, self._sub_port)

    def _run_proxy(self) -> None:
        xsub = self._context.socket(zmq.XSUB)
        xpub = self._context.socket(zmq.XPUB)
        xsub.setsockopt(zmq.LINGER, 0)
        xpub.setsockopt(zmq.LINGER, 0)
        try:
            xsub.bind(f"tcp://127.0.0.1:{self._pub_port}")
            xpub.bind(f"tcp://127.0.0.1:{self._sub_port}")
            zmq.proxy(xsub, xpub)
        except zmq.ContextTerminated:
            logger.debug("EventBus proxy context terminated")
        except zmq.ZMQError as exc:
            logger.error("EventBus proxy error: %s", exc)
        finally:
            xsub.close()
            xpub.close()

    def stop(self) -> None:
        """Stop the proxy by terminating its context."""
        self._context.term()
        if self._thread:
            self._thread.join(timeout=2)
        logger.info("EventBus stopped")


class NotificationPublisher:
    """Announces inserted events on the bus."""

    def __init__(self, port: int = 15555, topic: str = INSERT_TOPIC):
        self._topic = topic
        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.PUB)
        self._socket.setsockopt(zmq.LINGER, 0)
        self._socket.connect(f"tcp://127.0.0.1:{port}")

    def send(self, event: SecurityEvent) -> None:
        """Send an event with the configured topic prefix."""
        self._socket.send_multipart([self._topic.encode("utf-8"), event.to_bytes()])

    def close(self) -> None:
        self._socket.close()
        self._context.term()


class NotificationSubscriber:
    """Receives insert notifications and hands each event to a callback."""

    def __init__(
        self,
        port: int = 15556,
        topics: list[str] | None = None,
        callback: Callable[[SecurityEvent], None] | None = None,
    ):
        self._port = port
        self._topics = topics or [INSERT_TOPIC]
        self._callback = callback
        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.SUB)
        self._socket.setsockopt(zmq.LINGER, 0)
        self._running = False
        self._thread: threading.Thread | None = None

        for topic in self._topics:
            self._socket.subscribe(topic.encode("utf-8"))
        self._socket.connect(f"tcp://127.0.0.1:{port}")

    def start(self) -> None:
        """Start receiving notifications in a background thread."""
        self._running = True
        self._thread = threading.Thread(
            target=self._listen, daemon=True, name="threatlens-bus-sub",
        )
        self._thread.start()

    def _listen(self) -> None:
        poller = zmq.Poller()
        poller.register(self._socket, zmq.POLLIN)
        while self._running:
            socks = dict(poller.poll(timeout=100))
            if self._socket not in socks:
                continue
            try:
                parts = self._socket.recv_multipart(zmq.NOBLOCK)
            except zmq.ZMQError as exc:
                logger.debug("Bus receive failed: %s", exc)
                continue
            if len(parts) != 2:
                continue
            try:
                event = SecurityEvent.from_bytes(parts[1])
            except (MalformedEventError, ValueError) as exc:
                logger.warning("Dropping malformed bus notification: %s", exc)
                continue
            if self._callback:
                self._callback(event)

    def stop(self) -> None:
        """Stop receiving notifications."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2)
        self._socket.close()
        self._context.term()
