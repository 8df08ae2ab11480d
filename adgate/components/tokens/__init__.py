"""
Tokens component - single-use ad-attempt token issuance.
"""

from .component import hash_token, mint_token, run_issue, validate_issue
from .models import IssueAttemptInput, IssueAttemptOutput
from .ports import AttemptWriterPort, SessionReaderPort, TimePort

__all__ = [
    # Entry points
    "run_issue",
    # Helpers
    "hash_token",
    "mint_token",
    "validate_issue",
    # Input models
    "IssueAttemptInput",
    # Output models
    "IssueAttemptOutput",
    # Ports
    "AttemptWriterPort",
    "SessionReaderPort",
    "TimePort",
]
