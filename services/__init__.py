"""Services layer - activity tracking and classification logic separated from command handling."""
from .classifier import is_inactive
from .hydration import hydrate
from .scanner import remove_members, scan_inactive
from .voice_tracker import VoiceSessionTracker, VoiceTransition

__all__ = [
    "VoiceSessionTracker",
    "VoiceTransition",
    "hydrate",
    "is_inactive",
    "remove_members",
    "scan_inactive",
]
