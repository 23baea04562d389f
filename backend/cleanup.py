# backend/cleanup.py
import logging

from placeholder_engine import contains_addressable

logger = logging.getLogger(__name__)


def clean_document(doc: dict) -> dict:
    """
    Drop text nodes that resolution left empty or whitespace-only, then any
    paragraph emptied by that. Paragraphs that were already empty (blank
    lines in the template) stay. Text holding a field token is never removed.
    """
    removed = [0]

    def walk(node):
        if isinstance(node, dict) and node.get("type") == "text":
            if _is_blank(node):
                removed[0] += 1
                return None
            return node
        if not isinstance(node, dict) or not isinstance(node.get("content"), list):
            return node
        kept = []
        dropped = False
        for child in node["content"]:
            child = walk(child)
            if child is None:
                dropped = True
            else:
                kept.append(child)
        if node.get("type") == "paragraph" and dropped and not kept:
            removed[0] += 1
            return None
        return {**node, "content": kept}

    result = walk(doc)
    if removed[0]:
        logger.debug("[CLEANUP] Removed %d empty nodes", removed[0])
    return result


def _is_blank(text_node: dict) -> bool:
    text = text_node.get("text") or ""
    return not text.strip() and not contains_addressable(text)
