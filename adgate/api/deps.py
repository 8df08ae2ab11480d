import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from adgate.adapters.clock import SystemClock
from adgate.adapters.notifier import LoggingNotifier
from adgate.adapters.sqlite_db import (
    SQLiteAdAttemptRepo,
    SQLiteContentCatalog,
    SQLiteLedgerRepo,
    SQLiteReferralRepo,
    SQLiteUnitOfWork,
    SQLiteUnlockSessionRepo,
)
from adgate.rules.loader import load_rules
from adgate.rules.models import Rules
from adgate.services.gate import UnlockGateService

DEV_REFERRAL_SECRET = "adgate-dev-referral-secret"


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("ADGATE_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "adgate.db")
        self.rules_path = Path(
            os.environ.get("ADGATE_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.referral_secret = os.environ.get("ADGATE_REFERRAL_SECRET", DEV_REFERRAL_SECRET)
        self.log_level = os.environ.get("ADGATE_LOG_LEVEL", "INFO").upper()

    @property
    def using_dev_secret(self) -> bool:
        return self.referral_secret == DEV_REFERRAL_SECRET


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Adapters ---
_clock_instance: SystemClock | None = None
_notifier_instance: LoggingNotifier | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


def get_notifier() -> LoggingNotifier:
    """Get notifier singleton."""
    global _notifier_instance
    if _notifier_instance is None:
        _notifier_instance = LoggingNotifier()
    return _notifier_instance


def get_catalog(settings: Settings = Depends(get_settings)) -> SQLiteContentCatalog:
    return SQLiteContentCatalog(settings.db_path)


# --- Gate Service ---
def get_gate_service(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
    notifier: LoggingNotifier = Depends(get_notifier),
    catalog: SQLiteContentCatalog = Depends(get_catalog),
) -> UnlockGateService:
    """Build the gate service over the SQLite adapters for this request."""
    return UnlockGateService(
        unit_of_work=SQLiteUnitOfWork(settings.db_path),
        sessions=SQLiteUnlockSessionRepo(settings.db_path),
        attempts=SQLiteAdAttemptRepo(settings.db_path),
        ledger=SQLiteLedgerRepo(settings.db_path),
        referrals=SQLiteReferralRepo(settings.db_path),
        catalog=catalog,
        time=clock,
        rules=rules,
        referral_secret=settings.referral_secret,
        notifier=notifier,
    )


# --- Visitor identity ---
def get_visitor_id(
    x_visitor_id: Annotated[str | None, Header()] = None,
) -> str:
    """Require the client-persisted visitor id header."""
    if not x_visitor_id or not x_visitor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "VALIDATION_ERROR",
                "message": "X-Visitor-Id header is required",
                "retryable": False,
            },
        )
    return x_visitor_id.strip()


def get_optional_visitor_id(
    x_visitor_id: Annotated[str | None, Header()] = None,
) -> str | None:
    if x_visitor_id and x_visitor_id.strip():
        return x_visitor_id.strip()
    return None
