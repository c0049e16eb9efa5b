"""
In-process broker for tests and single-process runs.

Brokers are looked up by name, so ``loop://bench`` used by two clients in the
same interpreter reaches the same broker.
"""

import asyncio
import logging

from ..errors import TransportError
from .base import Client, Message, QoS

logger = logging.getLogger(__name__)

_brokers: dict[str, "LoopbackBroker"] = {}


class LoopbackBroker:
    """Exact-topic fan-out to every subscribed client"""

    def __init__(self, name: str = "default"):
        self.name = name
        self.subscriptions: dict[str, set["LoopbackClient"]] = {}

    @classmethod
    def named(cls, name: str) -> "LoopbackBroker":
        if name not in _brokers:
            _brokers[name] = cls(name)
        return _brokers[name]

    @classmethod
    def reset(cls) -> None:
        _brokers.clear()

    def subscribe(self, client: "LoopbackClient", topic: str) -> None:
        self.subscriptions.setdefault(topic, set()).add(client)

    def detach(self, client: "LoopbackClient") -> None:
        for clients in self.subscriptions.values():
            clients.discard(client)

    def route(self, topic: str, payload: bytes) -> None:
        for client in self.subscriptions.get(topic, ()):
            client.deliver(Message(topic=topic, payload=payload))


class LoopbackClient(Client):
    scheme = "loop"

    def __init__(self, broker: LoopbackBroker, client_id: str = "bench-client", max_payload: int = 1 << 31):
        super().__init__(client_id, max_payload)
        self.broker = broker
        self.inbox: asyncio.Queue[Message] = asyncio.Queue()
        self.fail_publish: Exception | None = None

    async def connect(self) -> None:
        self.connected = True
        logger.debug("%s attached to loopback broker %s", self.client_id, self.broker.name)

    async def subscribe(self, topic: str, qos: QoS = QoS.AT_MOST_ONCE) -> None:
        if not self.connected:
            raise TransportError("subscribe on a disconnected client")
        self.broker.subscribe(self, topic)

    async def publish(self, topic: str, payload: bytes, qos: QoS = QoS.AT_MOST_ONCE) -> None:
        if not self.connected:
            raise TransportError("publish on a disconnected client")
        if self.fail_publish is not None:
            raise TransportError(str(self.fail_publish)) from self.fail_publish
        if len(payload) > self.max_payload:
            raise TransportError(
                f"payload of {len(payload)} bytes exceeds the maximum of {self.max_payload}"
            )
        self.broker.route(topic, bytes(payload))
        # Yield so a flat-out publisher cannot starve its subscribers
        await asyncio.sleep(0)

    def deliver(self, message: Message) -> None:
        self.inbox.put_nowait(message)

    async def next_message(self) -> Message:
        if not self.connected:
            raise TransportError("receive on a disconnected client")
        return await self.inbox.get()

    async def disconnect(self) -> None:
        self.broker.detach(self)
        self.connected = False
