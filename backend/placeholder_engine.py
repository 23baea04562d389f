# backend/placeholder_engine.py
import re
import logging

from document_model import iter_text_nodes

logger = logging.getLogger(__name__)

# {{kind}} or {{kind:id}}
TOKEN_RE = re.compile(r"\{\{\s*([a-z0-9_+\-]+)\s*(?::\s*([^{}]+?)\s*)?\}\}", re.IGNORECASE)
# Addressable ids as written by assign_placeholder_ids, e.g. {{text:text-3}}
ADDRESSABLE_RE = re.compile(r"\{\{(text|signature|date):([^{}]+?)\}\}")

FIELD_KINDS = ("text", "signature", "date")
# Only these get ids at template load; a bare {{date}} means "today"
ASSIGNABLE_KINDS = ("text", "signature")

_UNBOUND_RE = re.compile(r"\{\{\s*(text|signature)\s*\}\}")
_PAYMENT_KEY_RE = re.compile(r"^payment_(\d+)_(percent|value|due|row)$")

PLACEHOLDER_CATALOG = [
    {"group": "client", "label": "Client Name", "tag": "{{client_name}}"},
    {"group": "client", "label": "Client Phone", "tag": "{{client_phone}}"},
    {"group": "client", "label": "Client Email", "tag": "{{client_email}}"},
    {"group": "field", "label": "Text Field", "tag": "{{text}}"},
    {"group": "field", "label": "Signature Field", "tag": "{{signature}}"},
    {"group": "field", "label": "Date", "tag": "{{date}}"},
    {"group": "pricing", "label": "Applicant Count", "tag": "{{applicant_count}}"},
    {"group": "pricing", "label": "Price Per Applicant", "tag": "{{price_per_applicant}}"},
    {"group": "pricing", "label": "Total Amount", "tag": "{{total_amount}}"},
    {"group": "pricing", "label": "Discount Percentage", "tag": "{{discount_percentage}}"},
    {"group": "pricing", "label": "Discount Amount", "tag": "{{discount_amount}}"},
    {"group": "pricing", "label": "Final Amount", "tag": "{{final_amount}}"},
    {"group": "pricing", "label": "Currency", "tag": "{{currency}}"},
    {"group": "payment_plan", "label": "Payment Plan Row", "tag": "{{payment_plan_row}}"},
    {"group": "payment_plan", "label": "Payment 1 Percent", "tag": "{{payment_1_percent}}"},
    {"group": "payment_plan", "label": "Payment 1 Value", "tag": "{{payment_1_value}}"},
    {"group": "payment_plan", "label": "Payment 1 Due", "tag": "{{payment_1_due}}"},
    {"group": "payment_plan", "label": "Payment 1 Row", "tag": "{{payment_1_row}}"},
]


def normalize_key(key: str) -> str:
    """
    Minimal normalization of a token kind.
    Strip braces and whitespace, lower-case. Keep underscores, digits and
    the + / - of tier keys (price_16+, price_4-7).
    """
    return key.strip().strip("{}").strip().lower()


def parse_payment_key(kind: str):
    """'payment_2_value' -> (2, 'value'); None for anything else."""
    m = _PAYMENT_KEY_RE.match(kind)
    if not m:
        return None
    return int(m.group(1)), m.group(2)


def is_addressable(token_text: str) -> bool:
    return bool(ADDRESSABLE_RE.fullmatch(token_text))


def contains_addressable(text: str) -> bool:
    return bool(text) and ADDRESSABLE_RE.search(text) is not None


# ---------- id assignment ----------
def assign_placeholder_ids(doc: dict) -> dict:
    """
    Rewrite every bare {{text}} / {{signature}} into {{text:text-N}} /
    {{signature:signature-N}}.

    One counter per kind is shared across the whole traversal and advances in
    document order, so the Nth text field always gets id text-N. Tokens that
    already carry an id are left alone, which makes the pass idempotent.
    Numbering continues after the highest id already present so a partly
    addressed template never produces duplicates.
    """
    counters = {kind: _highest_existing_id(doc, kind) for kind in ASSIGNABLE_KINDS}

    def next_id(kind):
        counters[kind] += 1
        return f"{{{{{kind}:{kind}-{counters[kind]}}}}}"

    def visit(node):
        if not isinstance(node, dict):
            return node
        if node.get("type") == "text":
            text = node.get("text") or ""
            if "{{" not in text:
                return node
            new_text = _assign_in_text(text, next_id)
            return node if new_text == text else {**node, "text": new_text}
        if isinstance(node.get("content"), list):
            return {**node, "content": [visit(c) for c in node["content"]]}
        return node

    result = visit(doc)
    assigned = {k: v - _highest_existing_id(doc, k) for k, v in counters.items()}
    if any(assigned.values()):
        logger.info("[FIELDS] Assigned ids: %s", assigned)
    return result


def _assign_in_text(text: str, next_id) -> str:
    # Left to right across both kinds, so "{{signature}} {{text}}" numbers in reading order
    return _UNBOUND_RE.sub(lambda m: next_id(m.group(1)), text)


def _highest_existing_id(doc: dict, kind: str) -> int:
    pattern = re.compile(r"\{\{" + kind + r":" + kind + r"-(\d+)\}\}")
    highest = 0
    for text in _iter_texts(doc):
        for m in pattern.finditer(text):
            highest = max(highest, int(m.group(1)))
    return highest


def has_unbound_fields(doc: dict) -> bool:
    """True while a template still has bare {{text}}/{{signature}} tokens."""
    return any(_UNBOUND_RE.search(text) for text in _iter_texts(doc))


def find_fields(doc: dict) -> list[dict]:
    """Addressable fields in document order: [{"kind": "text", "id": "text-1"}, ...]."""
    fields = []
    seen = set()
    for text in _iter_texts(doc):
        for m in ADDRESSABLE_RE.finditer(text):
            key = (m.group(1), m.group(2))
            if key in seen:
                continue
            seen.add(key)
            fields.append({"kind": m.group(1), "id": m.group(2)})
    return fields


def find_tokens(text: str) -> list[tuple[str, str | None]]:
    """All tokens in a string as (kind, id) pairs, kinds normalized."""
    return [(normalize_key(m.group(1)), m.group(2)) for m in TOKEN_RE.finditer(text or "")]


def _iter_texts(doc):
    for node in iter_text_nodes(doc):
        yield node.get("text") or ""
