"""
Per-provider spend tracking with daily and monthly budget guards.

Usage rows are upserted per (provider, period type, period key), where the
key is ``YYYY-MM-DD`` for daily and ``YYYY-MM`` for monthly windows. Limits
come from ``budget_settings``; a limit that is disabled or <= 0 means
unlimited.

Usage:
    ledger = BudgetLedger("openai", paths.db_dir / "budget.sqlite")
    ledger.ensure_within_limit(estimated_tokens=1200, estimated_cost=0.004)
    ...
    ledger.record(input_tokens=900, output_tokens=310, cost=0.0041)
"""

from __future__ import annotations

import math
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import SimplifyError
from ..logging_utils import log
from ..models.provider import DEFAULT_PER_TOKENS, Pricing

PERIOD_FORMATS = {"daily": "%Y-%m-%d", "monthly": "%Y-%m"}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS budget_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider_id TEXT NOT NULL,
    period_type TEXT NOT NULL,
    period_key TEXT NOT NULL,
    total_cost REAL NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    api_calls INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT,
    UNIQUE(provider_id, period_type, period_key)
);
CREATE TABLE IF NOT EXISTS budget_settings (
    provider_id TEXT PRIMARY KEY,
    daily_budget_enabled INTEGER NOT NULL DEFAULT 0,
    daily_budget REAL NOT NULL DEFAULT 0,
    monthly_budget_enabled INTEGER NOT NULL DEFAULT 0,
    monthly_budget REAL NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);
"""


class BudgetExceededError(SimplifyError):
    """A call would push a provider over its daily or monthly budget."""

    def __init__(self, message: str, *, period_type: str, limit: float, spent: float) -> None:
        super().__init__(message)
        self.period_type = period_type
        self.limit = limit
        self.spent = spent


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text or "") / 4)


def calculate_cost(
    input_tokens: int, output_tokens: int, pricing: Optional[Pricing]
) -> Optional[float]:
    """USD cost for a call, or None when the model has no pricing."""
    if pricing is None:
        return None
    per_tokens = pricing.per_tokens or DEFAULT_PER_TOKENS
    return (input_tokens / per_tokens) * pricing.input + (output_tokens / per_tokens) * pricing.output


def period_key(period_type: str, now: Optional[datetime] = None) -> str:
    try:
        fmt = PERIOD_FORMATS[period_type]
    except KeyError:
        raise ValueError(f"Unknown period type: {period_type}") from None
    return (now or datetime.now()).strftime(fmt)


class BudgetLedger:
    """Spend ledger and budget guard for one provider."""

    def __init__(self, provider_id: str, db_path: Path):
        self.provider_id = provider_id
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    # ---- usage ----

    def get_usage(self, period_type: str, key: Optional[str] = None) -> Dict[str, Any]:
        key = key or period_key(period_type)
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT total_cost, total_tokens, api_calls, last_updated FROM budget_usage "
                "WHERE provider_id = ? AND period_type = ? AND period_key = ?",
                (self.provider_id, period_type, key),
            ).fetchone()
        if row is None:
            return {"total_cost": 0.0, "total_tokens": 0, "api_calls": 0, "last_updated": None}
        return dict(row)

    def record(
        self,
        input_tokens: int,
        output_tokens: int,
        cost: Optional[float],
        now: Optional[datetime] = None,
    ) -> None:
        """Add one call to both the daily and the monthly window."""
        now = now or datetime.now()
        tokens = int(input_tokens or 0) + int(output_tokens or 0)
        amount = float(cost or 0.0)
        stamp = now.strftime("%Y-%m-%d %H:%M:%S")
        with closing(self._connect()) as conn, conn:
            for period_type in PERIOD_FORMATS:
                conn.execute(
                    "INSERT INTO budget_usage "
                    "(provider_id, period_type, period_key, total_cost, total_tokens, api_calls, last_updated) "
                    "VALUES (?, ?, ?, ?, ?, 1, ?) "
                    "ON CONFLICT(provider_id, period_type, period_key) DO UPDATE SET "
                    "total_cost = total_cost + excluded.total_cost, "
                    "total_tokens = total_tokens + excluded.total_tokens, "
                    "api_calls = api_calls + 1, "
                    "last_updated = excluded.last_updated",
                    (self.provider_id, period_type, period_key(period_type, now), amount, tokens, stamp),
                )

    def reset(self, period_type: str = "monthly", key: Optional[str] = None) -> None:
        key = key or period_key(period_type)
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "DELETE FROM budget_usage WHERE provider_id = ? AND period_type = ? AND period_key = ?",
                (self.provider_id, period_type, key),
            )
        log(f"Reset {period_type} budget usage for {self.provider_id} ({key})")

    # ---- settings ----

    def load_settings(self) -> Dict[str, Any]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM budget_settings WHERE provider_id = ?", (self.provider_id,)
            ).fetchone()
        if row is None:
            return {
                "dailyBudgetEnabled": False,
                "dailyBudget": 0.0,
                "monthlyBudgetEnabled": False,
                "monthlyBudget": 0.0,
            }
        return {
            "dailyBudgetEnabled": bool(row["daily_budget_enabled"]),
            "dailyBudget": float(row["daily_budget"]),
            "monthlyBudgetEnabled": bool(row["monthly_budget_enabled"]),
            "monthlyBudget": float(row["monthly_budget"]),
        }

    def save_settings(self, settings: Dict[str, Any]) -> None:
        """
        Store ``dailyBudget`` / ``monthlyBudget``. A window is enabled when its
        budget is positive unless ``dailyBudgetEnabled`` / ``monthlyBudgetEnabled``
        say otherwise.
        """
        daily = float(settings.get("dailyBudget") or 0)
        monthly = float(settings.get("monthlyBudget") or 0)
        daily_enabled = settings.get("dailyBudgetEnabled", daily > 0)
        monthly_enabled = settings.get("monthlyBudgetEnabled", monthly > 0)
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO budget_settings "
                "(provider_id, daily_budget_enabled, daily_budget, monthly_budget_enabled, "
                "monthly_budget, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(provider_id) DO UPDATE SET "
                "daily_budget_enabled = excluded.daily_budget_enabled, "
                "daily_budget = excluded.daily_budget, "
                "monthly_budget_enabled = excluded.monthly_budget_enabled, "
                "monthly_budget = excluded.monthly_budget, "
                "updated_at = excluded.updated_at",
                (self.provider_id, int(bool(daily_enabled)), daily,
                 int(bool(monthly_enabled)), monthly, stamp, stamp),
            )

    def _limits(self) -> Dict[str, float]:
        settings = self.load_settings()
        return {
            "daily": settings["dailyBudget"] if settings["dailyBudgetEnabled"] else 0.0,
            "monthly": settings["monthlyBudget"] if settings["monthlyBudgetEnabled"] else 0.0,
        }

    # ---- guard ----

    def ensure_within_limit(self, estimated_tokens: int, estimated_cost: Optional[float]) -> bool:
        """
        Check the next call against both windows.

        Returns:
            True when the call fits

        Raises:
            BudgetExceededError: If spent + estimated cost exceeds a limit
        """
        estimate = float(estimated_cost or 0.0)
        for period_type, limit in self._limits().items():
            if limit <= 0:
                continue
            spent = float(self.get_usage(period_type)["total_cost"])
            total = spent + estimate
            if total > limit:
                message = (
                    "%s budget limit exceeded for provider %s: $%.4f spent + $%.4f estimated "
                    "= $%.4f (limit: $%.4f)"
                    % (period_type.capitalize(), self.provider_id, spent, estimate, total, limit)
                )
                log(f"{message} ({estimated_tokens} tokens estimated)", level="warning")
                raise BudgetExceededError(message, period_type=period_type, limit=limit, spent=spent)
        return True

    def get_summary(self) -> Dict[str, Dict[str, Any]]:
        limits = self._limits()
        summary: Dict[str, Dict[str, Any]] = {}
        for period_type, limit in limits.items():
            key = period_key(period_type)
            usage = self.get_usage(period_type, key)
            spent = float(usage["total_cost"])
            summary[period_type] = {
                "budget": limit,
                "spent": spent,
                "remaining": max(0.0, limit - spent) if limit > 0 else None,
                "percent": round(spent / limit * 100, 2) if limit > 0 else 0.0,
                "tokens": int(usage["total_tokens"]),
                "calls": int(usage["api_calls"]),
                "exceeded": limit > 0 and spent >= limit,
                "period": key,
            }
        return summary
