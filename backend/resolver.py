# backend/resolver.py
"""
Fill a contract template from pricing and client data.

Derived tokens ({{client_name}}, {{total_amount}}, {{payment_plan_row}} ...)
become plain text. Field tokens ({{text:text-1}}, {{signature:signature-1}},
{{date:...}}) either stay in the tree for the presentation layer to turn into
inputs, or, in the read-only and signed views, are replaced by what the client
entered.

All cursors live on one ResolutionContext that is threaded through the whole
recursion. The second {{payment_plan_row}} in the document is always plan row
two, however deeply either token is nested.
"""
import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from document_model import flatten_text
from placeholder_engine import TOKEN_RE, normalize_key, parse_payment_key
from pricing import PricingState, TIER_KEYS, as_number
from tier_hints import DEFAULT_TIER_RULES, TierMatcher, context_before

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    EDITING = "editing"      # staff editor: every field token kept
    CLIENT = "client"        # public signing page: field tokens kept, plan values as "base + vat"
    READ_ONLY = "read_only"  # stored client inputs shown as text
    SIGNED = "signed"        # frozen copy written at signing time


FROZEN_MODES = frozenset({Mode.READ_ONLY, Mode.SIGNED})

TEXT_FIELD_PLACEHOLDER = "[Text Field]"
SIGNATURE_PLACEHOLDER = "[Signature]"
NO_INPUT = "[No input provided]"
NO_DATE = "[No date provided]"
NO_SIGNATURE = "[Not signed]"
SIGNED_MARKER = "[Client Signature]"

_DISCOUNT_LINE = re.compile(r"discount|הנחה", re.IGNORECASE)
_FIELD_TOKEN = re.compile(r"\{\{(?:text|signature|date):[^{}]+\}\}")
_CLIENT_KINDS = ("client_name", "client_phone", "client_email")


@dataclass
class ResolutionContext:
    pricing: PricingState
    client: dict
    contract: dict
    client_inputs: dict
    mode: Mode
    today: date
    flat_text: str
    offsets: list
    tiers: TierMatcher
    text_index: int = 0
    row_cursor: int = 0
    signatures: dict = field(default_factory=dict)
    unknown_kinds: set = field(default_factory=set)

    def warnings(self) -> list[str]:
        out = list(self.tiers.report())
        if self.unknown_kinds:
            out.append("Unknown placeholders removed: " + ", ".join(
                "{{" + k + "}}" for k in sorted(self.unknown_kinds)))
        return out


def build_context(doc: dict, pricing: PricingState | None = None, client: dict | None = None,
                  contract: dict | None = None, client_inputs: dict | None = None,
                  mode=Mode.EDITING, today: date | None = None,
                  tier_rules=DEFAULT_TIER_RULES) -> ResolutionContext:
    pricing = pricing or PricingState()
    flat, offsets = flatten_text(doc)
    return ResolutionContext(
        pricing=pricing,
        client=client or {},
        contract=contract or {},
        client_inputs=client_inputs or {},
        mode=Mode(mode),
        today=today or date.today(),
        flat_text=flat,
        offsets=offsets,
        tiers=TierMatcher(pricing.pricing_tiers, tier_rules),
    )


def resolve_document(doc: dict, ctx: ResolutionContext) -> dict:
    """Pure map over the tree; emptied text nodes are left for cleanup."""
    return _resolve_node(doc, ctx)


def _resolve_node(node, ctx):
    if not isinstance(node, dict):
        return node
    if node.get("type") == "text":
        index = ctx.text_index
        ctx.text_index += 1
        offset = ctx.offsets[index] if index < len(ctx.offsets) else len(ctx.flat_text)
        text = node.get("text") or ""
        if "{{" not in text and not _strips_discount(ctx):
            return node
        new_text = resolve_text(text, ctx, offset)
        return node if new_text == text else {**node, "text": new_text}
    if isinstance(node.get("content"), list):
        return {**node, "content": [_resolve_node(c, ctx) for c in node["content"]]}
    return node


def resolve_text(text: str, ctx: ResolutionContext, offset: int = 0) -> str:
    """Resolve one text node's string. `offset` is where it starts in ctx.flat_text."""
    out_lines = []
    line_start = 0
    for line in text.split("\n"):
        if _strips_discount(ctx) and _DISCOUNT_LINE.search(line) and not _FIELD_TOKEN.search(line):
            logger.debug("[RESOLVE] Dropped discount line %r", line)
        else:
            base = offset + line_start
            out_lines.append(TOKEN_RE.sub(lambda m: _substitute(m, ctx, base + m.start()), line))
        line_start += len(line) + 1
    return "\n".join(out_lines)


def _strips_discount(ctx) -> bool:
    p = ctx.pricing
    return not (as_number(p.discount_percentage) > 0 and as_number(p.discount_amount) > 0)


# ---------- per-token substitution ----------
def _substitute(m: re.Match, ctx: ResolutionContext, position: int) -> str:
    kind = normalize_key(m.group(1))
    field_id = m.group(2)
    pricing = ctx.pricing
    currency = pricing.currency or ""

    if kind in ("text", "signature", "date"):
        return _field(kind, field_id, m.group(0), ctx)

    if kind in _CLIENT_KINDS:
        return _client_value(kind, ctx)

    if kind == "applicant_count":
        return str(max(int(as_number(pricing.applicant_count, 1)), 1))
    if kind == "total_amount":
        return format_amount(pricing.total_amount)
    if kind == "final_amount":
        return format_amount(pricing.final_amount)
    if kind == "discount_percentage":
        return str(as_number(pricing.discount_percentage))
    if kind == "discount_amount":
        return format_amount(pricing.discount_amount)
    if kind == "currency":
        return currency

    if kind == "price_per_applicant":
        context = context_before(ctx.flat_text, position)
        tier = ctx.tiers.resolve(context)
        price = pricing.pricing_tiers.get(tier, 0) if tier else 0
        return f"{currency} {format_amount(price)}".strip()
    if kind.startswith("price_"):
        tier = kind[len("price_"):]
        if tier not in TIER_KEYS:
            logger.warning("[RESOLVE] Unknown price tier token {{%s}}", kind)
        return f"{currency} {format_amount(pricing.pricing_tiers.get(tier, 0))}".strip()

    if kind == "payment_plan_row":
        index = ctx.row_cursor
        ctx.row_cursor += 1
        if index >= len(pricing.payment_plan):
            logger.debug("[RESOLVE] payment_plan_row #%d has no plan row", index + 1)
            return ""
        row = pricing.payment_plan[index]
        shown = format_amount(row.total) if ctx.mode in FROZEN_MODES else row.value
        return f"{as_number(row.percent)}% = {currency} {shown}"

    payment = parse_payment_key(kind)
    if payment:
        return _payment_value(payment[0], payment[1], ctx)

    ctx.unknown_kinds.add(kind)
    logger.debug("[RESOLVE] Unknown placeholder {{%s}} removed", kind)
    return ""


def _payment_value(n: int, part: str, ctx: ResolutionContext) -> str:
    plan = ctx.pricing.payment_plan
    currency = ctx.pricing.currency or ""
    if not 1 <= n <= len(plan):
        return "0" if part in ("percent", "value") else ""
    row = plan[n - 1]
    if part == "percent":
        return str(as_number(row.percent))
    if part == "value":
        return f"{currency} {format_amount(row.total)}".strip()
    if part == "due":
        return row.due_date or row.payment_order or row.label
    return f"{as_number(row.percent)}% = {currency} {format_amount(row.total)}"


def _client_value(kind: str, ctx: ResolutionContext) -> str:
    contract, client = ctx.contract, ctx.client
    if contract.get("contact_name"):
        values = {
            "client_name": contract.get("contact_name"),
            "client_phone": contract.get("contact_phone") or contract.get("contact_mobile"),
            "client_email": contract.get("contact_email"),
        }
    else:
        values = {
            "client_name": client.get("name"),
            "client_phone": client.get("phone") or client.get("mobile"),
            "client_email": client.get("email"),
        }
    return str(values.get(kind) or "")


def _field(kind: str, field_id, raw: str, ctx: ResolutionContext) -> str:
    if kind == "date" and not field_id:
        return format_long_date(ctx.today)

    if not field_id:
        if ctx.mode == Mode.EDITING:
            return raw
        return TEXT_FIELD_PLACEHOLDER if kind == "text" else SIGNATURE_PLACEHOLDER

    if ctx.mode not in FROZEN_MODES:
        return raw

    value = ctx.client_inputs.get(field_id)
    if kind == "signature":
        if not value:
            return NO_SIGNATURE
        ctx.signatures[field_id] = value
        return SIGNED_MARKER
    if kind == "date":
        return format_long_date(value) if value else NO_DATE
    return str(value) if value else NO_INPUT


# ---------- formatting ----------
def format_amount(value) -> str:
    """Thousands separators; two decimals only when the amount has a fraction."""
    n = as_number(value)
    if isinstance(n, int):
        return f"{n:,}"
    return f"{n:,.2f}"


def format_long_date(value) -> str:
    """'2025-03-07' / date -> 'March 7, 2025'. Unparseable strings are returned as-is."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        except ValueError:
            return value
    if not isinstance(value, date):
        return ""
    return f"{value.strftime('%B')} {value.day}, {value.year}"
