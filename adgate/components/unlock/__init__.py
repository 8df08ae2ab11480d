"""
Unlock component - per-visitor ad progress, completion and reward shortcuts.
"""

from .component import (
    calculate_effective_ads,
    run,
    run_apply_shortcut,
    run_get_or_create,
    run_get_progress,
    session_progress,
)
from .models import (
    ApplyShortcutInput,
    GetOrCreateSessionInput,
    GetProgressInput,
    SessionOutput,
    SessionProgress,
)
from .ports import TimePort, UnlockSessionRepoPort

__all__ = [
    # Entry points
    "run",
    "run_get_or_create",
    "run_apply_shortcut",
    "run_get_progress",
    # Pure functions
    "calculate_effective_ads",
    "session_progress",
    # Input models
    "GetOrCreateSessionInput",
    "ApplyShortcutInput",
    "GetProgressInput",
    # Output models
    "SessionOutput",
    "SessionProgress",
    # Ports
    "TimePort",
    "UnlockSessionRepoPort",
]
