"""
Kiosk Transport Layer

One reconnecting WebSocket to the pipeline server plus the typed
envelope model spoken over it.

Usage:
    from voicekiosk.transport import TransportChannel, envelopes

    channel = TransportChannel("ws://kiosk.local:8080/ws")
    channel.on_envelope(engine.handle)
    await channel.connect()
    await channel.send(envelopes.ptt_start())
"""

from voicekiosk.transport import envelopes
from voicekiosk.transport.channel import TransportChannel
from voicekiosk.transport.envelopes import (
    ChannelType,
    InboundEnvelope,
    InteractionMode,
    PipelineState,
    parse_envelope,
)

__all__ = [
    "TransportChannel",
    "envelopes",
    "InboundEnvelope",
    "parse_envelope",
    "PipelineState",
    "InteractionMode",
    "ChannelType",
]
