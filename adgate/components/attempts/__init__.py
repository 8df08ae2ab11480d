"""
Attempts component - ad completion validation and atomic progress increment.
"""

from .component import check_attempt, run_complete
from .models import CompleteAttemptInput, CompleteAttemptOutput
from .ports import TimePort, TransactionContext, UnitOfWorkPort

__all__ = [
    # Entry points
    "run_complete",
    "check_attempt",
    # Input models
    "CompleteAttemptInput",
    # Output models
    "CompleteAttemptOutput",
    # Ports
    "TimePort",
    "TransactionContext",
    "UnitOfWorkPort",
]
