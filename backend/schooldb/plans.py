# backend/schooldb/plans.py
"""
Plan catalog.

Static table of plan tier -> numeric resource limits + boolean feature
flags, plus the price list for the purchasable tiers. Loaded at import and
never mutated at runtime; per-tenant overrides are not supported.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

UNLIMITED = -1

DEFAULT_PLAN = "starter"
PLAN_ORDER = ("starter", "standard", "pro")
PURCHASABLE_PLANS = ("standard", "pro")

RESOURCE_KINDS = ("pupils", "teachers", "classes", "parents")

FEATURE_FLAGS = (
    "pdf_export",
    "excel_export",
    "theme_customization",
    "sms_notifications",
    "custom_report_branding",
    "multi_campus",
    "api_access",
)

BILLING_PERIOD_MONTHS = {"monthly": 1, "termly": 4, "yearly": 12}
DEFAULT_BILLING_PERIOD = "termly"
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class PlanDefinition:
    name: str
    label: str
    limits: Dict[str, int]
    features: FrozenSet[str] = field(default_factory=frozenset)

    def limit_for(self, kind: str) -> int:
        if kind not in RESOURCE_KINDS:
            raise ValueError(f"Unknown resource kind {kind!r}")
        return self.limits[kind]

    def has_feature(self, flag: str) -> bool:
        return flag in self.features


PLAN_CATALOG: Dict[str, PlanDefinition] = {
    "starter": PlanDefinition(
        name="starter",
        label="Starter",
        limits={"pupils": 100, "teachers": 5, "classes": 5, "parents": 50},
        features=frozenset({"pdf_export"}),
    ),
    "standard": PlanDefinition(
        name="standard",
        label="Standard",
        limits={"pupils": 500, "teachers": UNLIMITED, "classes": UNLIMITED, "parents": UNLIMITED},
        features=frozenset(
            {"pdf_export", "excel_export", "theme_customization", "custom_report_branding"}
        ),
    ),
    "pro": PlanDefinition(
        name="pro",
        label="Pro",
        limits={kind: UNLIMITED for kind in RESOURCE_KINDS},
        features=frozenset(FEATURE_FLAGS),
    ),
}

# currency -> tier -> period -> amount
PLAN_PRICING: Dict[str, Dict[str, Dict[str, Decimal]]] = {
    "USD": {
        "standard": {"monthly": Decimal("20"), "termly": Decimal("50"), "yearly": Decimal("150")},
        "pro": {"monthly": Decimal("60"), "termly": Decimal("170"), "yearly": Decimal("490")},
    },
    "KES": {
        "standard": {"monthly": Decimal("2600"), "termly": Decimal("6500"), "yearly": Decimal("19500")},
        "pro": {"monthly": Decimal("7800"), "termly": Decimal("22100"), "yearly": Decimal("63700")},
    },
    "UGX": {
        "standard": {"monthly": Decimal("75000"), "termly": Decimal("187500"), "yearly": Decimal("562500")},
        "pro": {"monthly": Decimal("225000"), "termly": Decimal("637500"), "yearly": Decimal("1837500")},
    },
}


def get_plan(tier: Optional[str]) -> PlanDefinition:
    """Return the plan for `tier`, falling back to starter for unknown names."""
    return PLAN_CATALOG.get((tier or "").strip().lower(), PLAN_CATALOG[DEFAULT_PLAN])


def check_feature(tier: Optional[str], flag: str) -> bool:
    return get_plan(tier).has_feature(flag)


def check_limit(tier: Optional[str], kind: str, current_count: int) -> bool:
    """
    True when one more resource of `kind` may be created.

    -1 means unlimited and always passes; otherwise the current count must
    be strictly below the limit.
    """
    limit = get_plan(tier).limit_for(kind)
    if limit == UNLIMITED:
        return True
    return current_count < limit


def minimum_plan_for(flag: str) -> Optional[str]:
    """Lowest tier that grants `flag`, or None if no tier does."""
    for name in PLAN_ORDER:
        if PLAN_CATALOG[name].has_feature(flag):
            return name
    return None


def quote(tier: str, currency: str = DEFAULT_CURRENCY, period: str = DEFAULT_BILLING_PERIOD) -> Decimal:
    """
    Price of one billing period of `tier`.

    Raises ValueError for non-purchasable tiers or unsupported currencies/periods.
    """
    if tier not in PURCHASABLE_PLANS:
        raise ValueError(f"Plan {tier!r} cannot be purchased")
    if period not in BILLING_PERIOD_MONTHS:
        raise ValueError(f"Unknown billing period {period!r}")
    by_currency = PLAN_PRICING.get((currency or "").upper())
    if by_currency is None:
        raise ValueError(f"Unsupported currency {currency!r}")
    return by_currency[tier][period]


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end(starts_at: datetime, period: str) -> datetime:
    if period not in BILLING_PERIOD_MONTHS:
        raise ValueError(f"Unknown billing period {period!r}")
    return add_months(starts_at, BILLING_PERIOD_MONTHS[period])
