"""
Echo responder, the passive side of latency and request/response runs.
"""

import logging

from .benchmark import Benchmark
from .cancel import CancelToken
from .codec import reply_payload
from .errors import DecodeError

logger = logging.getLogger(__name__)


class EchoResponder(Benchmark):
    """
    Republishes every message from the ping topic on the pong topic.

    The payload goes back untouched, unless ``reply_size`` is configured: the
    reply is then the request's identity header padded to ``reply_size``.
    A failed publish ends the run.
    """

    kind = "pong"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.echoed = 0

    @property
    def subscriptions(self) -> list[str]:
        return [self.config.ping_topic]

    def respond(self, payload: bytes) -> bytes:
        if self.config.reply_size is None:
            return payload
        return reply_payload(payload, self.config.reply_size)

    async def receive_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start pong %d on %s -> %s", cfg.sender_id, cfg.ping_topic, cfg.pong_topic)
        while True:
            message = await self.receive(token, cfg.ping_topic)
            try:
                reply = self.respond(message.payload)
            except DecodeError as e:
                logger.error("Unable to answer request: %s", e)
                continue
            logger.debug("Received a ping of %d bytes", len(message.payload))
            await token.run(self.client.publish(cfg.pong_topic, reply, cfg.qos))
            self.echoed += 1

    def summary(self) -> dict:
        return {"echoed": self.echoed}
