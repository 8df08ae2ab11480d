from adgate.ports.clock import TimePort
from adgate.ports.repo import (
    LedgerRepoPort,
    ReferralRepoPort,
    StorageError,
    UnitOfWorkPort,
)

__all__ = [
    "LedgerRepoPort",
    "ReferralRepoPort",
    "StorageError",
    "TimePort",
    "UnitOfWorkPort",
]
