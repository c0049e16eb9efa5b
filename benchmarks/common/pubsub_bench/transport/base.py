"""
Transport interface consumed by the benchmarks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1


@dataclass
class Message:
    """One inbound publication"""
    topic: str
    payload: bytes


class Client(ABC):
    """
    A connected pub/sub session.

    Every method raises TransportError on failure; there is no reconnect.
    """

    scheme = "unknown"

    def __init__(self, client_id: str, max_payload: int):
        self.client_id = client_id
        self.max_payload = max_payload
        self.connected = False

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def subscribe(self, topic: str, qos: QoS = QoS.AT_MOST_ONCE) -> None:
        """Return once the subscription is acknowledged"""

    @abstractmethod
    async def publish(self, topic: str, payload: bytes, qos: QoS = QoS.AT_MOST_ONCE) -> None:
        ...

    @abstractmethod
    async def next_message(self) -> Message:
        """Suspend until a message arrives. Safe to cancel."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.disconnect()
