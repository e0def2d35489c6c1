"""
Session synchronization: the engine mirroring the server-owned pipeline.
"""

from voicekiosk.sync.engine import SessionSyncEngine
from voicekiosk.sync.models import ChatMessage, TipMessage, VoiceActivity

__all__ = ["SessionSyncEngine", "ChatMessage", "TipMessage", "VoiceActivity"]
