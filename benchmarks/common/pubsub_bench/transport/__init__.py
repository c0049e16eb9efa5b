"""
Transport collaborators.

``open_client`` turns an endpoint string into an unconnected Client:

    127.0.0.1:1883 / mqtt://host:port   MQTT 3.1.1 over TCP
    loop://name                         in-process loopback broker
"""

from ..errors import ConfigurationError
from .base import Client, Message, QoS
from .loopback import LoopbackBroker, LoopbackClient
from .mqtt import MQTTClient

DEFAULT_MQTT_PORT = 1883


def parse_endpoint(endpoint: str) -> tuple[str, str]:
    """Split an endpoint into (scheme, address)"""
    if "://" in endpoint:
        scheme, address = endpoint.split("://", 1)
        return scheme.lower(), address
    return "mqtt", endpoint


def open_client(endpoint: str, identity: str, max_payload: int) -> Client:
    scheme, address = parse_endpoint(endpoint)

    if scheme in ("mqtt", "tcp"):
        host, _, port = address.rpartition(":")
        if not host:
            host, port = address, str(DEFAULT_MQTT_PORT)
        try:
            port_number = int(port)
        except ValueError as e:
            raise ConfigurationError(f"invalid port in endpoint {endpoint!r}") from e
        return MQTTClient(
            host=host.strip("[]") or "127.0.0.1",
            port=port_number,
            client_id=identity,
            max_payload=max_payload,
        )

    if scheme == "loop":
        broker = LoopbackBroker.named(address or "default")
        return LoopbackClient(broker, client_id=identity, max_payload=max_payload)

    raise ConfigurationError(f"unsupported transport scheme {scheme!r} in {endpoint!r}")


__all__ = [
    "Client",
    "LoopbackBroker",
    "LoopbackClient",
    "MQTTClient",
    "Message",
    "QoS",
    "open_client",
    "parse_endpoint",
]
