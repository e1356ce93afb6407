from __future__ import annotations

from datetime import datetime, date, timezone
from typing import Any, Optional


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def clean_text(v: Optional[Any]) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def money(v: Any) -> float:
    return round(float(v or 0), 2)


def fmt_money(v: float, currency: str = "UGX") -> str:
    return f"{currency} {float(v):,.0f}"


def month_prefix(iso_date: str) -> str:
    return str(iso_date)[:7]
