from adgate.ports.clock import TimePort
from adgate.ports.repo import TransactionContext, UnitOfWorkPort

__all__ = ["TimePort", "TransactionContext", "UnitOfWorkPort"]
