"""
Secondary event stream: assembles assistant messages from part snapshots
and deltas.
"""

from voicekiosk.events.aggregator import IncrementalEventAggregator, MessageAssembler
from voicekiosk.events.models import AssembledMessage, Part, PartKind

__all__ = [
    "IncrementalEventAggregator",
    "MessageAssembler",
    "AssembledMessage",
    "Part",
    "PartKind",
]
