"""
MQTT 3.1.1 client for benchmarking

A lightweight asyncio client with only the features a measurement run
needs: CONNECT, SUBSCRIBE, PUBLISH at QoS 0/1 and DISCONNECT. Avoids the
overhead and buffering of full-featured libraries.
"""

import asyncio
import logging
import struct

from ..errors import TransportError
from .base import Client, Message, QoS

logger = logging.getLogger(__name__)

CONNECT = 0x10
CONNACK = 0x20
PUBLISH = 0x30
PUBACK = 0x40
SUBSCRIBE = 0x82
SUBACK = 0x90
PINGRESP = 0xD0
DISCONNECT = 0xE0

# Fixed header plus topic overhead allowed on top of the payload
PACKET_HEADER_SIZE = 14
MAX_REMAINING_LENGTH = 268_435_455
CONNECT_TIMEOUT = 5.0


def encode_remaining_length(length: int) -> bytes:
    """Encode a remaining length as an MQTT variable-length integer"""
    if not 0 <= length <= MAX_REMAINING_LENGTH:
        raise ValueError(f"remaining length {length} out of range")
    out = bytearray()
    while True:
        byte = length % 128
        length //= 128
        if length > 0:
            byte |= 0x80
        out.append(byte)
        if length == 0:
            return bytes(out)


async def read_remaining_length(reader: asyncio.StreamReader) -> int:
    multiplier = 1
    value = 0
    for _ in range(4):
        byte = (await reader.readexactly(1))[0]
        value += (byte & 0x7F) * multiplier
        if not byte & 0x80:
            return value
        multiplier *= 128
    raise TransportError("malformed remaining length")


def encode_string(s: str) -> bytes:
    encoded = s.encode("utf-8")
    return struct.pack("!H", len(encoded)) + encoded


def build_packet(header: int, body: bytes) -> bytes:
    return bytes([header]) + encode_remaining_length(len(body)) + body


class MQTTClient(Client):
    """Minimal MQTT 3.1.1 client"""

    scheme = "mqtt"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 1883,
        client_id: str = "bench-client",
        max_payload: int = MAX_REMAINING_LENGTH - PACKET_HEADER_SIZE,
    ):
        super().__init__(client_id, max_payload)
        self.host = host
        self.port = port
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._connack: asyncio.Future | None = None
        self._subacks: dict[int, asyncio.Future] = {}
        self._next_packet_id = 0
        self._failure: TransportError | None = None

    @property
    def max_packet_size(self) -> int:
        return self.max_payload + PACKET_HEADER_SIZE

    def _packet_id(self) -> int:
        self._next_packet_id = self._next_packet_id % 0xFFFF + 1
        return self._next_packet_id

    async def connect(self):
        """Connect to the broker and wait for CONNACK"""
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=CONNECT_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"cannot reach broker {self.host}:{self.port}: {e}") from e

        loop = asyncio.get_running_loop()
        self._connack = loop.create_future()
        self._reader_task = loop.create_task(self._read_loop())

        protocol_name = b"\x00\x04MQTT"
        protocol_level = b"\x04"
        connect_flags = b"\x02"  # Clean session
        keep_alive = b"\x00\x00"  # Disabled, idle subscribers must not be dropped

        variable_header = protocol_name + protocol_level + connect_flags + keep_alive
        await self._send(build_packet(CONNECT, variable_header + encode_string(self.client_id)))

        try:
            return_code = await asyncio.wait_for(self._connack, timeout=CONNECT_TIMEOUT)
        except asyncio.TimeoutError as e:
            await self._close()
            raise TransportError("no CONNACK from broker") from e
        except TransportError:
            await self._close()
            raise
        if return_code != 0:
            await self._close()
            raise TransportError(f"broker refused connection (return code {return_code})")

        self.connected = True
        logger.info("Connected to mqtt://%s:%d as %s", self.host, self.port, self.client_id)

    async def subscribe(self, topic: str, qos: QoS = QoS.AT_MOST_ONCE):
        """Subscribe to a topic and wait for SUBACK"""
        self._ensure_connected()
        packet_id = self._packet_id()
        suback = asyncio.get_running_loop().create_future()
        self._subacks[packet_id] = suback

        body = struct.pack("!H", packet_id) + encode_string(topic) + bytes([int(qos)])
        await self._send(build_packet(SUBSCRIBE, body))

        try:
            granted = await asyncio.wait_for(suback, timeout=CONNECT_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise TransportError(f"no SUBACK for {topic}") from e
        finally:
            self._subacks.pop(packet_id, None)
        if granted == 0x80:
            raise TransportError(f"broker rejected subscription to {topic}")
        logger.debug("Subscribed to %s (granted QoS %d)", topic, granted)

    async def publish(self, topic: str, payload: bytes, qos: QoS = QoS.AT_MOST_ONCE):
        """Publish a message to a topic"""
        self._ensure_connected()
        if len(payload) > self.max_payload:
            raise TransportError(
                f"payload of {len(payload)} bytes exceeds the maximum of {self.max_payload}"
            )

        var_header = encode_string(topic)
        if qos > QoS.AT_MOST_ONCE:
            var_header += struct.pack("!H", self._packet_id())
        await self._send(build_packet(PUBLISH | (int(qos) << 1), var_header + payload))

    async def next_message(self) -> Message:
        """Wait for the next PUBLISH queued by the reader task"""
        item = await self._inbox.get()
        if isinstance(item, TransportError):
            # Keep the failure visible to any later caller
            self._inbox.put_nowait(item)
            raise item
        return item

    async def disconnect(self):
        """Send DISCONNECT and close the connection"""
        if self.writer and self.connected:
            try:
                self.writer.write(bytes([DISCONNECT, 0x00]))
                await self.writer.drain()
            except (OSError, RuntimeError) as e:
                logger.debug("DISCONNECT not delivered: %s", e)
        self.connected = False
        await self._close()

    def _ensure_connected(self):
        if self._failure is not None:
            raise self._failure
        if not self.connected:
            raise TransportError("client is not connected")

    async def _send(self, packet: bytes):
        try:
            self.writer.write(packet)
            await self.writer.drain()
        except (OSError, RuntimeError) as e:
            raise TransportError(f"write to broker failed: {e}") from e

    async def _close(self):
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self.writer is not None:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError:
                pass
            self.writer = None

    async def _read_loop(self):
        try:
            while True:
                header = (await self.reader.readexactly(1))[0]
                length = await read_remaining_length(self.reader)
                if length > self.max_packet_size:
                    raise TransportError(
                        f"incoming packet of {length} bytes exceeds the maximum of {self.max_packet_size}"
                    )
                body = await self.reader.readexactly(length) if length else b""
                try:
                    await self._dispatch(header, body)
                except (UnicodeDecodeError, struct.error, IndexError) as e:
                    raise TransportError(f"malformed MQTT packet 0x{header:02x}: {e}") from e
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            self._fail(e)
        except (asyncio.IncompleteReadError, OSError) as e:
            self._fail(TransportError(f"connection to broker lost: {e!r}"))

    async def _dispatch(self, header: int, body: bytes):
        packet_type = header & 0xF0
        if packet_type == PUBLISH:
            qos = (header >> 1) & 0x03
            topic_len = struct.unpack("!H", body[:2])[0]
            topic = body[2 : 2 + topic_len].decode("utf-8")
            offset = 2 + topic_len
            if qos > 0:
                packet_id = body[offset : offset + 2]
                offset += 2
                await self._send(bytes([PUBACK, 0x02]) + packet_id)
            self._inbox.put_nowait(Message(topic=topic, payload=body[offset:]))
        elif packet_type == CONNACK:
            if self._connack is not None and not self._connack.done():
                self._connack.set_result(body[1] if len(body) >= 2 else 0xFF)
        elif packet_type == SUBACK:
            packet_id = struct.unpack("!H", body[:2])[0]
            suback = self._subacks.get(packet_id)
            if suback is not None and not suback.done():
                suback.set_result(body[2] if len(body) >= 3 else 0x80)
        elif packet_type in (PUBACK, PINGRESP):
            pass
        else:
            logger.debug("Ignoring MQTT packet type 0x%02x", packet_type)

    def _fail(self, error: TransportError):
        logger.debug("MQTT reader stopped: %s", error)
        self._failure = error
        self.connected = False
        for future in [self._connack, *self._subacks.values()]:
            if future is not None and not future.done():
                future.set_exception(error)
        self._inbox.put_nowait(error)
