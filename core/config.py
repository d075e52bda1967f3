"""Sync engine settings.

Reads configuration from environment variables, loading a `.env` file at the
repository root first when one exists.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from connectors.base import SyncError


REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = REPO_ROOT / "ledger_sync.db"

BUSY_POLICIES = ("reject", "queue")


class ConfigurationError(SyncError):
    """Settings are missing or invalid."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SyncSettings:
    """Configuration for one engine instance.

    Attributes:
        actual_budget_url: Ledger server base URL
        actual_budget_password: Ledger server password
        actual_budget_sync_id: Budget file to load before any budget-scoped call
        business_category_group_id: Restrict syncing to this category group
        business_category_group_name: Same, looked up by name when no id is set
        xano_api_url: Middleware store base URL
        xano_api_key: Middleware store API key
        xano_rate_limit: Store requests-per-minute quota (hard external limit)
        xero_client_id / xero_client_secret: OAuth2 client credentials
        xero_tenant_id: Accounting tenant all calls are scoped to
        sync_days_back: Default window length in days
        sync_schedule: Cron expression for the scheduled trigger
        worker_concurrency: Transactions processed in parallel within a run
        retry_max_attempts: Attempts before a RetryItem is abandoned
        retry_base_delay_seconds / retry_max_delay_seconds: RetryItem backoff
        busy_policy: "reject" or "queue" a trigger while a run is active
        shutdown_grace_seconds: How long in-flight work may finish on shutdown
        run_lease_seconds: How long a run lease survives without renewal
        db_path: SQLite file for the retry queue and idempotency store
    """
    actual_budget_url: str = ""
    actual_budget_password: str = ""
    actual_budget_sync_id: str = ""
    business_category_group_id: Optional[str] = None
    business_category_group_name: Optional[str] = None

    xano_api_url: str = ""
    xano_api_key: str = ""
    xano_rate_limit: int = 10

    xero_client_id: str = ""
    xero_client_secret: str = ""
    xero_tenant_id: str = ""

    sync_days_back: int = 7
    sync_schedule: str = "0 */6 * * *"
    worker_concurrency: int = 4
    retry_max_attempts: int = 5
    retry_base_delay_seconds: float = 300.0
    retry_max_delay_seconds: float = 86400.0
    busy_policy: str = "reject"
    shutdown_grace_seconds: float = 30.0
    run_lease_seconds: float = 300.0
    request_timeout_seconds: float = 30.0

    db_path: Path = DEFAULT_DB_PATH
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "SyncSettings":
        """Build settings from the environment (and `.env` when present)."""
        env_path = env_file or REPO_ROOT / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        return cls(
            actual_budget_url=os.getenv("ACTUAL_BUDGET_URL", ""),
            actual_budget_password=os.getenv("ACTUAL_BUDGET_PASSWORD", ""),
            actual_budget_sync_id=os.getenv("ACTUAL_BUDGET_SYNC_ID", ""),
            business_category_group_id=os.getenv("BUSINESS_CATEGORY_GROUP_ID") or None,
            business_category_group_name=os.getenv("BUSINESS_CATEGORY_GROUP_NAME") or None,
            xano_api_url=os.getenv("XANO_API_URL", ""),
            xano_api_key=os.getenv("XANO_API_KEY", ""),
            xano_rate_limit=_env_int("XANO_RATE_LIMIT", 10),
            xero_client_id=os.getenv("XERO_CLIENT_ID", ""),
            xero_client_secret=os.getenv("XERO_CLIENT_SECRET", ""),
            xero_tenant_id=os.getenv("XERO_TENANT_ID", ""),
            sync_days_back=_env_int("SYNC_DAYS_BACK", 7),
            sync_schedule=os.getenv("SYNC_SCHEDULE", "0 */6 * * *"),
            worker_concurrency=_env_int("SYNC_WORKER_CONCURRENCY", 4),
            retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 5),
            retry_base_delay_seconds=_env_float("RETRY_BASE_DELAY_SECONDS", 300.0),
            retry_max_delay_seconds=_env_float("RETRY_MAX_DELAY_SECONDS", 86400.0),
            busy_policy=os.getenv("SYNC_BUSY_POLICY", "reject").strip().lower(),
            shutdown_grace_seconds=_env_float("SHUTDOWN_GRACE_SECONDS", 30.0),
            run_lease_seconds=_env_float("RUN_LEASE_SECONDS", 300.0),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 30.0),
            db_path=Path(os.getenv("SYNC_DB_PATH", str(DEFAULT_DB_PATH))),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", False),
        )

    def problems(self) -> List[str]:
        """List every configuration problem (empty when valid)."""
        problems = []
        required = {
            "ACTUAL_BUDGET_URL": self.actual_budget_url,
            "ACTUAL_BUDGET_PASSWORD": self.actual_budget_password,
            "ACTUAL_BUDGET_SYNC_ID": self.actual_budget_sync_id,
            "XANO_API_URL": self.xano_api_url,
            "XANO_API_KEY": self.xano_api_key,
            "XERO_CLIENT_ID": self.xero_client_id,
            "XERO_CLIENT_SECRET": self.xero_client_secret,
            "XERO_TENANT_ID": self.xero_tenant_id,
        }
        for name, value in required.items():
            if not value:
                problems.append(f"{name} is not set")

        if self.xano_rate_limit < 1:
            problems.append("XANO_RATE_LIMIT must be at least 1")
        if self.worker_concurrency < 1:
            problems.append("SYNC_WORKER_CONCURRENCY must be at least 1")
        if self.retry_max_attempts < 1:
            problems.append("RETRY_MAX_ATTEMPTS must be at least 1")
        if self.run_lease_seconds <= 0:
            problems.append("RUN_LEASE_SECONDS must be positive")
        if self.sync_days_back < 0:
            problems.append("SYNC_DAYS_BACK must not be negative")
        if self.busy_policy not in BUSY_POLICIES:
            problems.append(f"SYNC_BUSY_POLICY must be one of {', '.join(BUSY_POLICIES)}")
        return problems

    def validate(self) -> "SyncSettings":
        """Raise ConfigurationError listing every problem, or return self."""
        problems = self.problems()
        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))
        return self
