# backend/pipeline.py
"""
normalize -> assign ids (once) -> resolve -> cleanup, as one call.

Callers re-run render_contract() whenever pricing, client data or inputs
change; nothing here is incremental.
"""
import logging
from dataclasses import dataclass, field
from datetime import date

from cleanup import clean_document
from content_normalizer import normalize_content
from document_model import empty_doc, is_doc
from placeholder_engine import assign_placeholder_ids, find_fields, has_unbound_fields
from pricing import PricingState, plan_percent_warning
from resolver import Mode, build_context, resolve_document

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    doc: dict
    mode: str
    warnings: list = field(default_factory=list)
    fields: list = field(default_factory=list)
    signatures: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "doc": self.doc,
            "mode": self.mode,
            "warnings": list(self.warnings),
            "fields": list(self.fields),
            "signatures": dict(self.signatures),
        }


def prepare_template(raw, warnings: list[str] | None = None) -> dict:
    """Canonical tree with ids on every field. Safe to call on an already prepared template."""
    doc = normalize_content(raw, warnings)
    if has_unbound_fields(doc):
        doc = assign_placeholder_ids(doc)
    return doc


def render_contract(template, pricing: PricingState | None = None, client: dict | None = None,
                    contract: dict | None = None, client_inputs: dict | None = None,
                    mode=Mode.EDITING, today: date | None = None) -> RenderResult:
    """
    Full render of one contract. `template` may be anything the normalizer
    accepts; a tree that still has bare {{text}} tokens gets ids first so
    stored inputs line up with what the client sees.
    """
    warnings: list[str] = []
    doc = prepare_template(template, warnings)
    fields = find_fields(doc)

    ctx = build_context(doc, pricing, client=client, contract=contract,
                        client_inputs=client_inputs, mode=mode, today=today)
    resolved = clean_document(resolve_document(doc, ctx))
    if not is_doc(resolved):
        logger.warning("[RESOLVE] Resolution produced a %r root; resetting to an empty document",
                       resolved.get("type") if isinstance(resolved, dict) else type(resolved).__name__)
        warnings.append("Rendered document was malformed and has been reset")
        resolved = empty_doc()

    warnings.extend(ctx.warnings())
    if pricing is not None:
        plan_warning = plan_percent_warning(pricing.payment_plan)
        if plan_warning:
            warnings.append(plan_warning)

    logger.debug("[RESOLVE] Rendered in %s mode with %d warnings", ctx.mode.value, len(warnings))
    return RenderResult(doc=resolved, mode=ctx.mode.value, warnings=warnings,
                        fields=fields, signatures=dict(ctx.signatures))
