"""
NATS Adapters

Provides the NATS client wrapper used by remote dispatch and workers.
"""

from .nats_client import NatsClient, NatsConfig, Topics

__all__ = ["NatsClient", "NatsConfig", "Topics"]
