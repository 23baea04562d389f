# backend/pricing.py
"""
Derived pricing for a contract: totals, discount, VAT and the instalment plan.

The stored shape (PricingState.to_dict) is the contract record's
`custom_pricing` object. Every public function takes a state and returns a new
one; callers persist whatever comes back.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP

from config import DEFAULT_CURRENCY, VAT_RATE

logger = logging.getLogger(__name__)

# (tier key, min applicants, max applicants or None for open-ended)
TIER_BANDS = (
    ("1", 1, 1),
    ("2", 2, 2),
    ("3", 3, 3),
    ("4-7", 4, 7),
    ("8-9", 8, 9),
    ("10-15", 10, 15),
    ("16+", 16, None),
)
TIER_KEYS = tuple(k for k, _, _ in TIER_BANDS)
DISCOUNT_OPTIONS = (0, 5, 10, 15, 20)

ARCHIVAL_LABEL = "Archival Research"
FINAL_LABEL = "Final Payment"

CURRENCY_FAMILIES = {
    "₪": "ILS", "NIS": "ILS", "ILS": "ILS",
    "$": "USD", "USD": "USD",
}
VAT_FAMILIES = frozenset({"ILS"})

# Unit price per applicant for each band, before VAT
DEFAULT_TIER_TABLES = {
    "ILS": {"1": 15000, "2": 14000, "3": 13500, "4-7": 13000, "8-9": 12000, "10-15": 12000, "16+": 11000},
    "USD": {"1": 5000, "2": 4700, "3": 4500, "4-7": 4300, "8-9": 3900, "10-15": 3900, "16+": 3500},
}

_EDITABLE_FIELDS = {
    "applicant_count", "pricing_tiers", "discount_percentage", "currency",
    "archival_research_fee", "vat_included", "payment_plan", "total_amount",
    "discount_amount",
}


class PricingError(ValueError):
    """Rejected pricing input (bad discount, unknown field, bad row index...)."""


# ---------- helpers ----------
def round_half_up(value) -> int:
    """Round .5 away from zero, the way invoices are rounded (not banker's rounding)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def as_number(value, default=0):
    """Coerce user/JSON input to int where integral, float otherwise."""
    if value is None or value == "":
        return default
    try:
        num = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return default
    if math.isnan(num) or math.isinf(num):
        return default
    return int(num) if num.is_integer() else num


def as_bool(value, default=True) -> bool:
    """JSON/form booleans; "false", "0", "no" and "off" are False."""
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off", ""):
            return False
        raise PricingError(f"Not a boolean: {value!r}")
    return bool(value)


def tier_key_for_count(count) -> str:
    count = max(int(as_number(count, 1)), 1)
    for key, low, high in TIER_BANDS:
        if count >= low and (high is None or count <= high):
            return key
    return TIER_KEYS[-1]


def currency_family(currency):
    return CURRENCY_FAMILIES.get((currency or "").strip().upper())


def is_vat_currency(currency) -> bool:
    return currency_family(currency) in VAT_FAMILIES


def default_tiers(currency) -> dict:
    family = currency_family(currency) or currency_family(DEFAULT_CURRENCY) or "USD"
    return dict(DEFAULT_TIER_TABLES[family])


def parse_composite(value) -> tuple:
    """
    Split a stored plan value into (base, vat).

    Accepts numbers, plain numeric strings and the legacy "base + vat" text.
    Anything unreadable counts as zero.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return as_number(value), 0
    text = str(value or "")
    if "+" in text:
        parts = [as_number(p) for p in text.split("+")]
        return parts[0], sum(parts[1:])
    return as_number(text), 0


# ---------- data ----------
@dataclass
class PaymentRow:
    percent: float = 0
    label: str = ""
    due_date: str = ""
    payment_order: str = ""
    notes: str = ""
    base: float = 0
    vat: float = 0

    @property
    def is_archival(self) -> bool:
        return self.label == ARCHIVAL_LABEL

    @property
    def total(self):
        return as_number(self.base + self.vat)

    @property
    def value(self) -> str:
        """Presentation form: "base + vat" when VAT applies, else just the base."""
        if self.vat:
            return f"{_plain(self.base)} + {_plain(self.vat)}"
        return _plain(self.base)

    def to_dict(self) -> dict:
        return {
            "percent": self.percent,
            "label": self.label,
            "due_date": self.due_date,
            "payment_order": self.payment_order,
            "notes": self.notes,
            "value": self.value,
            "value_base": self.base,
            "value_vat": self.vat,
        }

    @classmethod
    def from_dict(cls, data) -> "PaymentRow":
        if not isinstance(data, dict):
            return cls()
        if "value_base" in data:
            base, vat = as_number(data.get("value_base")), as_number(data.get("value_vat"))
        else:
            base, vat = parse_composite(data.get("value"))
            vat = as_number(vat + as_number(data.get("value_vat")))
        return cls(
            percent=as_number(data.get("percent", data.get("due_percent"))),
            label=str(data.get("label") or ""),
            due_date=str(data.get("due_date") or ""),
            payment_order=str(data.get("payment_order") or ""),
            notes=str(data.get("notes") or ""),
            base=base,
            vat=vat,
        )


@dataclass
class PricingState:
    applicant_count: int = 1
    pricing_tiers: dict = field(default_factory=dict)
    total_amount: float = 0
    discount_percentage: int = 0
    discount_amount: float = 0
    final_amount: float = 0
    currency: str = DEFAULT_CURRENCY
    archival_research_fee: float = 0
    vat_included: bool = True
    payment_plan: list = field(default_factory=list)

    @property
    def discounted_base_total(self):
        return as_number(self.total_amount + self.archival_research_fee - self.discount_amount)

    def to_dict(self) -> dict:
        return {
            "applicant_count": self.applicant_count,
            "pricing_tiers": dict(self.pricing_tiers),
            "total_amount": self.total_amount,
            "discount_percentage": self.discount_percentage,
            "discount_amount": self.discount_amount,
            "final_amount": self.final_amount,
            "currency": self.currency,
            "archival_research_fee": self.archival_research_fee,
            "vat_included": self.vat_included,
            "payment_plan": [r.to_dict() for r in self.payment_plan],
        }

    @classmethod
    def from_dict(cls, data) -> "PricingState":
        if not isinstance(data, dict):
            data = {}
        tiers = data.get("pricing_tiers")
        return cls(
            applicant_count=max(int(as_number(data.get("applicant_count"), 1)), 1),
            pricing_tiers={str(k): as_number(v) for k, v in tiers.items()} if isinstance(tiers, dict) else {},
            total_amount=as_number(data.get("total_amount")),
            discount_percentage=as_number(data.get("discount_percentage")),
            discount_amount=as_number(data.get("discount_amount")),
            final_amount=as_number(data.get("final_amount")),
            currency=str(data.get("currency") or DEFAULT_CURRENCY),
            archival_research_fee=as_number(data.get("archival_research_fee")),
            vat_included=_stored_bool(data.get("vat_included")),
            payment_plan=[PaymentRow.from_dict(r) for r in data.get("payment_plan") or []],
        )


def _stored_bool(value) -> bool:
    try:
        return as_bool(value, True)
    except PricingError:
        logger.warning("[PRICING] Unreadable vat_included %r in stored pricing; assuming True", value)
        return True


def _plain(n) -> str:
    n = as_number(n)
    return str(n)


# ---------- derivation ----------
def new_pricing_state(currency=None, applicant_count=1, pricing_tiers=None, archival_research_fee=0,
                      discount_percentage=0, vat_included=True) -> PricingState:
    """Fresh pricing for a new contract, seeded from the currency's default tier table."""
    currency = currency or DEFAULT_CURRENCY
    _check_discount(discount_percentage)
    state = PricingState(
        applicant_count=applicant_count,
        pricing_tiers=dict(pricing_tiers) if pricing_tiers else default_tiers(currency),
        discount_percentage=as_number(discount_percentage),
        currency=currency,
        archival_research_fee=as_number(archival_research_fee),
        vat_included=as_bool(vat_included),
    )
    return derive_payment_plan(recompute_totals(state))


def recompute_totals(state: PricingState) -> PricingState:
    """total = tier price × applicants; discount and final follow from it."""
    count = max(int(as_number(state.applicant_count, 1)), 1)
    tier = tier_key_for_count(count)
    unit = as_number(state.pricing_tiers.get(tier))
    total = as_number(unit * count)
    discount_amount = round_half_up(total * as_number(state.discount_percentage) / 100)
    return replace(
        state,
        applicant_count=count,
        total_amount=total,
        discount_amount=discount_amount,
        final_amount=as_number(total - discount_amount),
    )


def build_default_plan(final_amount, archival_research_fee=0) -> list:
    plan = []
    if archival_research_fee and archival_research_fee > 0:
        plan.append(PaymentRow(percent=100, label=ARCHIVAL_LABEL, due_date="On signing",
                               payment_order=ARCHIVAL_LABEL, base=archival_research_fee))
    if final_amount and final_amount > 0:
        for percent, label, due in ((50, "First Payment", "On signing"),
                                    (25, "Intermediate Payment", "30 days"),
                                    (25, FINAL_LABEL, "60 days")):
            plan.append(PaymentRow(percent=percent, label=label, due_date=due, payment_order=label,
                                   base=round_half_up(final_amount * percent / 100)))
    return plan


def derive_payment_plan(state: PricingState) -> PricingState:
    """
    Recompute every instalment's (base, vat) from the current totals.

    Row percentages, labels, due dates and notes are kept; values are always
    rebuilt, so running this on its own output changes nothing. The Archival
    Research row is pinned to the fee and the remaining rows share the rest of
    the discounted total in proportion to their percentages.
    """
    fee = as_number(state.archival_research_fee)
    rows = [replace(r) for r in state.payment_plan]
    if not rows:
        rows = build_default_plan(state.final_amount, fee)

    distributable = distributable_total(state, rows)
    instalments = [r for r in rows if not r.is_archival]
    total_percent = sum(as_number(r.percent) for r in instalments) or 100
    apply_vat = state.vat_included and is_vat_currency(state.currency)

    for row in rows:
        if row.is_archival:
            row.base, row.vat = fee, 0
            continue
        row.base = round_half_up(distributable * as_number(row.percent) / total_percent)
        row.vat = round_half_up(row.base * VAT_RATE) if apply_vat else 0

    if instalments:
        instalments[-1].label = FINAL_LABEL

    logger.debug("[PRICING] Derived %d plan rows from %s (vat=%s)", len(rows), distributable, apply_vat)
    return replace(state, payment_plan=rows)


def distributable_total(state: PricingState, rows=None):
    """Discounted total the instalment rows share; the archival fee is carved out when it has its own row."""
    rows = state.payment_plan if rows is None else rows
    has_archival = any(r.is_archival for r in rows)
    fee = as_number(state.archival_research_fee) if has_archival else 0
    return as_number(state.discounted_base_total - fee)


def percent_total(plan) -> float:
    return as_number(sum(as_number(r.percent) for r in plan if not r.is_archival))


def plan_percent_warning(plan):
    """Warning text when the instalment percentages do not add up to 100."""
    total = percent_total(plan)
    if any(not r.is_archival for r in plan) and total != 100:
        return f"Payment plan percentages add up to {total}%, not 100%"
    if not plan:
        return "Payment plan is empty"
    return None


# ---------- change triggers ----------
def apply_pricing_change(state: PricingState, changes: dict) -> PricingState:
    """
    Apply user edits and bring every derived field back in line.

    Count, tier price, discount and currency edits recompute the totals first;
    every edit then re-derives the payment plan.
    """
    if not isinstance(changes, dict):
        raise PricingError("Pricing changes must be an object")
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise PricingError(f"Unknown pricing fields: {', '.join(sorted(unknown))}")

    updates = {}
    if "currency" in changes:
        currency = str(changes["currency"] or "").strip()
        if not currency:
            raise PricingError("Currency cannot be empty")
        updates["currency"] = currency
        if currency_family(currency) is None:
            logger.warning("[PRICING] Unknown currency %r; keeping current tier prices", currency)
        elif "pricing_tiers" not in changes and currency_family(currency) != currency_family(state.currency):
            updates["pricing_tiers"] = default_tiers(currency)

    if "pricing_tiers" in changes:
        tiers = changes["pricing_tiers"]
        if not isinstance(tiers, dict):
            raise PricingError("pricing_tiers must be an object of tier -> price")
        merged = dict(updates.get("pricing_tiers", state.pricing_tiers))
        for key, price in tiers.items():
            if str(key) not in TIER_KEYS:
                raise PricingError(f"Unknown tier '{key}'")
            price = as_number(price, None)
            if price is None or price < 0:
                raise PricingError(f"Invalid price for tier '{key}'")
            merged[str(key)] = price
        updates["pricing_tiers"] = merged

    if "applicant_count" in changes:
        updates["applicant_count"] = max(int(as_number(changes["applicant_count"], 1)), 1)

    if "discount_percentage" in changes:
        _check_discount(changes["discount_percentage"])
        updates["discount_percentage"] = as_number(changes["discount_percentage"])

    if "archival_research_fee" in changes:
        fee = as_number(changes["archival_research_fee"], None)
        if fee is None or fee < 0:
            raise PricingError("archival_research_fee must be a non-negative number")
        updates["archival_research_fee"] = fee

    if "vat_included" in changes:
        updates["vat_included"] = as_bool(changes["vat_included"])

    if "payment_plan" in changes:
        plan = changes["payment_plan"]
        if not isinstance(plan, list):
            raise PricingError("payment_plan must be a list of rows")
        updates["payment_plan"] = [PaymentRow.from_dict(r) for r in plan]

    # total_amount / discount_amount are derived; accepted only so stale
    # clients can echo the whole object back
    new_state = recompute_totals(replace(state, **updates))
    logger.info("[PRICING] Applied %s -> total=%s final=%s", sorted(changes), new_state.total_amount,
                new_state.final_amount)
    return derive_payment_plan(new_state)


def update_payment_row(state: PricingState, index: int, field_name: str, value) -> PricingState:
    """
    Edit one row of the plan.

    Editing `percent` re-derives the values; editing `value` (plain or
    "base + vat") turns the amount back into a percentage of the VAT-inclusive
    amount the instalments share, the same amount derive_payment_plan splits.
    """
    rows = [replace(r) for r in state.payment_plan]
    if not 0 <= index < len(rows):
        raise PricingError(f"Payment row {index} does not exist")
    row = rows[index]

    if field_name == "percent":
        percent = as_number(value, None)
        if percent is None or percent < 0:
            raise PricingError("percent must be a non-negative number")
        row.percent = percent
    elif field_name == "value":
        if row.is_archival:
            raise PricingError("The Archival Research row always equals the archival fee")
        base, vat = parse_composite(value)
        shared = distributable_total(state, rows)
        with_vat = shared
        if state.vat_included and is_vat_currency(state.currency):
            with_vat = shared + round_half_up(shared * VAT_RATE)
        row.percent = round_half_up((base + vat) / with_vat * 100) if with_vat > 0 else 0
    elif field_name in ("label", "due_date", "payment_order", "notes"):
        setattr(row, field_name, str(value or ""))
    else:
        raise PricingError(f"Payment rows have no editable field '{field_name}'")

    return derive_payment_plan(replace(state, payment_plan=rows))


def add_payment_row(state: PricingState) -> PricingState:
    rows = [replace(r) for r in state.payment_plan] + [PaymentRow(percent=0)]
    return derive_payment_plan(replace(state, payment_plan=rows))


def delete_payment_row(state: PricingState, index: int) -> PricingState:
    rows = [replace(r) for r in state.payment_plan]
    if not 0 <= index < len(rows):
        raise PricingError(f"Payment row {index} does not exist")
    del rows[index]
    if not rows:
        # the next derivation regenerates the default plan
        return replace(state, payment_plan=[])
    return derive_payment_plan(replace(state, payment_plan=rows))


def _check_discount(value):
    if as_number(value, None) not in DISCOUNT_OPTIONS:
        raise PricingError(f"discount_percentage must be one of {', '.join(map(str, DISCOUNT_OPTIONS))}")
