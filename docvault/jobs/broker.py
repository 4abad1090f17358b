"""Dramatiq broker selection. Import this before any actor is declared."""
import os

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")


def build_broker(kind: str = None) -> dramatiq.Broker:
    kind = (kind or os.getenv("DRAMATIQ_BROKER", "redis")).lower()
    if kind == "stub":
        return StubBroker()
    if kind == "redis":
        return RedisBroker(url=REDIS_URL)
    raise ValueError(f"Unsupported DRAMATIQ_BROKER: {kind}")


broker = build_broker()
dramatiq.set_broker(broker)
