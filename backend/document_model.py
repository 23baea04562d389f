# backend/document_model.py
"""
Canonical rich-text tree used by every pass.

Nodes are plain dicts in the editor's JSON shape:

    {"type": "doc", "content": [...]}
    {"type": "heading", "attrs": {"level": 2}, "content": [...]}
    {"type": "text", "text": "Hi", "marks": [{"type": "bold"}]}

Passes never mutate a tree they were given; they build and return a new one.
"""
import re
import logging

logger = logging.getLogger(__name__)

BLOCK_TYPES = frozenset({
    "doc", "paragraph", "heading", "bulletList", "orderedList",
    "listItem", "blockquote",
})
LEAF_TYPES = frozenset({"horizontalRule", "hardBreak"})
NODE_TYPES = BLOCK_TYPES | LEAF_TYPES | {"text"}
MARK_TYPES = ("bold", "italic", "underline", "strike")
TEXT_ALIGNS = frozenset({"left", "center", "right", "justify"})

_RTL_CHARS = re.compile(r"[\u0590-\u05FF\u0600-\u06FF\uFB1D-\uFDFF\uFE70-\uFEFF]")
_LTR_CHARS = re.compile(r"[A-Za-z\u00C0-\u024F]")


def empty_doc() -> dict:
    return {"type": "doc", "content": []}


def text_node(text: str, marks: list[str] | None = None) -> dict:
    node = {"type": "text", "text": text}
    if marks:
        node["marks"] = [{"type": m} for m in marks]
    return node


def is_doc(node) -> bool:
    return isinstance(node, dict) and node.get("type") == "doc" and isinstance(node.get("content"), list)


def coerce_node(node, warnings: list[str] | None = None) -> list[dict]:
    """
    Bring one raw node into canonical shape.

    Returns a list because unknown wrapper types are unwrapped into their
    children (and unknown leaves dropped), so one raw node may become zero or
    many canonical nodes.
    """
    if not isinstance(node, dict):
        _warn(warnings, f"Dropped non-object node of type {type(node).__name__}")
        return []

    kind = node.get("type")
    if kind == "text":
        text = node.get("text", node.get("content", ""))
        if not isinstance(text, str):
            text = "" if text is None else str(text)
        out = {"type": "text", "text": text}
        marks = _coerce_marks(node.get("marks"))
        if marks:
            out["marks"] = marks
        attrs = _coerce_attrs(kind, node.get("attrs"))
        if attrs:
            out["attrs"] = attrs
        return [out]

    children = node.get("content")
    if not isinstance(children, list):
        children = []
    coerced = [c for child in children for c in coerce_node(child, warnings)]

    if kind not in NODE_TYPES:
        if coerced:
            _warn(warnings, f"Unwrapped unsupported node type '{kind}'")
        else:
            _warn(warnings, f"Dropped unsupported node type '{kind}'")
        return coerced

    if kind == "doc":
        # a nested doc is only a wrapper
        return coerced

    out = {"type": kind}
    attrs = _coerce_attrs(kind, node.get("attrs"))
    if attrs:
        out["attrs"] = attrs
    if kind in BLOCK_TYPES:
        out["content"] = coerced
    return [out]


def coerce_doc(node, warnings: list[str] | None = None) -> dict:
    """Canonicalize a node that is already shaped like {"type": "doc", ...}."""
    content = node.get("content") if isinstance(node, dict) else None
    if not isinstance(content, list):
        content = []
    doc = {"type": "doc", "content": [c for child in content for c in coerce_node(child, warnings)]}
    attrs = _coerce_attrs("doc", node.get("attrs") if isinstance(node, dict) else None)
    if attrs:
        doc["attrs"] = attrs
    return doc


def _coerce_marks(marks) -> list[dict]:
    if not isinstance(marks, list):
        return []
    out = []
    for m in marks:
        name = m.get("type") if isinstance(m, dict) else m
        if name in MARK_TYPES and {"type": name} not in out:
            out.append({"type": name})
    return out


def _coerce_attrs(kind, attrs) -> dict:
    out = {}
    if not isinstance(attrs, dict):
        attrs = {}
    if kind == "heading":
        try:
            level = int(attrs.get("level", 1))
        except (TypeError, ValueError):
            level = 1
        out["level"] = min(max(level, 1), 6)
    align = attrs.get("textAlign")
    if align in TEXT_ALIGNS:
        out["textAlign"] = align
    return out


def _warn(warnings, message):
    logger.debug("[MODEL] %s", message)
    if warnings is not None:
        warnings.append(message)


# ---------- traversal helpers ----------
def iter_text_nodes(node):
    """Yield text nodes in document order (depth-first, left to right)."""
    if not isinstance(node, dict):
        return
    if node.get("type") == "text":
        yield node
        return
    for child in node.get("content") or []:
        yield from iter_text_nodes(child)


def flatten_text(doc) -> tuple[str, list[int]]:
    """
    Concatenate every text node in document order.

    Inline siblings are joined directly; a newline separates text that lives
    in different blocks. Returns the flat string and, for each text node in
    document order, the offset where its text starts.
    """
    parts: list[str] = []
    offsets: list[int] = []
    length = 0

    def walk(node):
        nonlocal length
        if not isinstance(node, dict):
            return
        kind = node.get("type")
        if kind == "text":
            offsets.append(length)
            text = node.get("text") or ""
            parts.append(text)
            length += len(text)
            return
        if kind == "hardBreak":
            parts.append("\n")
            length += 1
            return
        for child in node.get("content") or []:
            walk(child)
        if kind in BLOCK_TYPES and kind != "doc" and parts and not parts[-1].endswith("\n"):
            parts.append("\n")
            length += 1

    walk(doc)
    return "".join(parts), offsets


def plain_text(node) -> str:
    return "".join(t.get("text") or "" for t in iter_text_nodes(node))


def infer_direction(node) -> str:
    """'rtl' when the first strongly-directional character is Hebrew/Arabic, else 'ltr'."""
    text = plain_text(node)
    rtl = _RTL_CHARS.search(text)
    ltr = _LTR_CHARS.search(text)
    if rtl and (not ltr or rtl.start() < ltr.start()):
        return "rtl"
    return "ltr"


def text_align(node) -> str:
    """Explicit textAlign attribute if set, otherwise aligned with the script direction."""
    attrs = node.get("attrs") or {}
    if attrs.get("textAlign") in TEXT_ALIGNS:
        return attrs["textAlign"]
    return "right" if infer_direction(node) == "rtl" else "left"
