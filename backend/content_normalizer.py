# backend/content_normalizer.py
"""
Turn whatever the template store hands us into a canonical doc tree.

Accepted shapes: a doc tree, a bare node list, a single node, a JSON string of
any of those, an HTML string, an object carrying {"html": ...} (legacy rich
text, where any "delta" alongside it is ignored), or a .docx file.

normalize_content() never raises. Anything it cannot make sense of becomes an
empty doc plus a warning.
"""
import re
import json
import logging

import mammoth
from bs4 import BeautifulSoup, NavigableString, Tag, Comment

from document_model import coerce_doc, empty_doc, MARK_TYPES

logger = logging.getLogger(__name__)

_HEADING_LEVEL = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_BLOCK_MAP = {
    "p": "paragraph",
    "ul": "bulletList",
    "ol": "orderedList",
    "li": "listItem",
    "blockquote": "blockquote",
}
_MARK_TAGS = {
    "b": "bold", "strong": "bold",
    "i": "italic", "em": "italic",
    "u": "underline", "ins": "underline",
    "s": "strike", "strike": "strike", "del": "strike",
}
# Containers we look through without emitting a node
_TRANSPARENT_BLOCKS = {
    "html", "body", "div", "section", "article", "main", "header", "footer",
    "table", "thead", "tbody", "tfoot", "tr", "td", "th", "form", "center",
}
_NOISE_TAGS = {"script", "style", "noscript", "head", "title", "meta"}
_WS = re.compile(r"\s+")


def normalize_content(raw, warnings: list[str] | None = None) -> dict:
    """Always returns a {"type": "doc", "content": [...]} tree."""
    if warnings is None:
        warnings = []
    try:
        return _normalize(raw, warnings)
    except Exception as e:
        # Last line of defence: malformed templates must still render
        logger.warning("[NORMALIZE] Could not normalize template content: %s", e)
        warnings.append(f"Template content could not be read ({e}); using an empty document")
        return empty_doc()


def _normalize(raw, warnings):
    if raw is None:
        warnings.append("Template content is empty")
        return empty_doc()

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            warnings.append("Template content is empty")
            return empty_doc()
        try:
            raw = json.loads(stripped)
        except ValueError:
            return html_to_doc(stripped, warnings)
        if isinstance(raw, str):
            # JSON-encoded string literal, most likely HTML
            return html_to_doc(raw, warnings)
        if not isinstance(raw, (dict, list)):
            # "42", "true": text that happens to be valid JSON
            return html_to_doc(stripped, warnings)

    if isinstance(raw, dict) and isinstance(raw.get("html"), str):
        return html_to_doc(raw["html"], warnings)

    if isinstance(raw, dict) and raw.get("type") == "doc":
        if not isinstance(raw.get("content"), list):
            warnings.append("Document content was not a list; treated as empty")
        return coerce_doc(raw, warnings)

    if isinstance(raw, list):
        return coerce_doc({"type": "doc", "content": raw}, warnings)

    if isinstance(raw, dict) and "type" in raw and "content" in raw:
        return coerce_doc({"type": "doc", "content": [raw]}, warnings)

    if isinstance(raw, dict) and "delta" in raw:
        warnings.append("Legacy delta content without HTML is not supported; using an empty document")
    else:
        warnings.append(f"Unrecognised template content ({type(raw).__name__}); using an empty document")
    logger.warning("[NORMALIZE] %s", warnings[-1])
    return empty_doc()


# ---------- HTML -> tree ----------
def html_to_doc(html: str, warnings: list[str] | None = None) -> dict:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    root = soup.find("body") or soup
    content = _convert_children(root, [])
    return coerce_doc({"type": "doc", "content": content}, warnings)


def _convert_children(el, marks: list[str]) -> list[dict]:
    """
    Convert the children of a block-level element into block nodes.

    Runs of inline content (text, marks, <br>) that sit directly in a block
    container are gathered into an implicit paragraph, as an editor would.
    """
    blocks: list[dict] = []
    inline: list[dict] = []

    def flush():
        if any(n["type"] == "text" and n["text"].strip() for n in inline):
            blocks.append({"type": "paragraph", "content": _trim_inline(inline)})
        inline.clear()

    for child in el.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            inline.extend(_inline_nodes(child, marks))
            continue
        if not isinstance(child, Tag):
            continue
        block = _convert_block(child, marks)
        if block is None:
            inline.extend(_inline_nodes(child, marks))
        else:
            flush()
            blocks.extend(block)
    flush()
    return blocks


def _convert_block(tag: Tag, marks: list[str]):
    """Block nodes for a block-level tag, or None when the tag is inline."""
    name = tag.name
    if name in _HEADING_LEVEL:
        node = {"type": "heading", "attrs": {"level": _HEADING_LEVEL[name]},
                "content": _trim_inline(_inline_nodes(tag, marks))}
        return [_with_align(node, tag)]
    if name == "p":
        return [_with_align({"type": "paragraph", "content": _trim_inline(_inline_nodes(tag, marks))}, tag)]
    if name == "hr":
        return [{"type": "horizontalRule"}]
    if name in ("ul", "ol"):
        items = []
        for li in tag.find_all("li", recursive=False):
            items.append({"type": "listItem", "content": _convert_children(li, marks)})
        return [{"type": _BLOCK_MAP[name], "content": items}]
    if name == "li":
        return [{"type": "listItem", "content": _convert_children(tag, marks)}]
    if name == "blockquote":
        return [{"type": "blockquote", "content": _convert_children(tag, marks)}]
    if name in _TRANSPARENT_BLOCKS:
        children = _convert_children(tag, marks)
        align = _align_of(tag)
        if align:
            for c in children:
                c.setdefault("attrs", {}).setdefault("textAlign", align)
        return children
    return None


def _inline_nodes(el, marks: list[str]) -> list[dict]:
    if isinstance(el, Comment):
        return []
    if isinstance(el, NavigableString):
        text = str(el)
        if not text:
            return []
        node = {"type": "text", "text": text}
        if marks:
            node["marks"] = [{"type": m} for m in marks]
        return [node]
    if not isinstance(el, Tag):
        return []
    if el.name == "br":
        return [{"type": "hardBreak"}]
    child_marks = marks
    mark = _MARK_TAGS.get(el.name)
    if mark is None and el.name == "span":
        mark = _mark_from_style(el.get("style", ""))
    if mark and mark not in marks:
        child_marks = sorted(marks + [mark], key=MARK_TYPES.index)
    out = []
    for child in el.children:
        out.extend(_inline_nodes(child, child_marks))
    return out


def _trim_inline(nodes: list[dict]) -> list[dict]:
    """Collapse runs of whitespace and merge adjacent text with the same marks."""
    merged: list[dict] = []
    for n in nodes:
        if n["type"] == "text":
            text = _WS.sub(" ", n["text"])
            n = {**n, "text": text}
            if merged and merged[-1]["type"] == "text" and merged[-1].get("marks") == n.get("marks"):
                prev = merged[-1]["text"]
                if prev.endswith(" ") and text.startswith(" "):
                    text = text[1:]
                merged[-1] = {**merged[-1], "text": prev + text}
                continue
        merged.append(n)
    if merged and merged[0]["type"] == "text":
        merged[0] = {**merged[0], "text": merged[0]["text"].lstrip()}
    if merged and merged[-1]["type"] == "text":
        merged[-1] = {**merged[-1], "text": merged[-1]["text"].rstrip()}
    return [n for n in merged if n["type"] != "text" or n["text"]]


def _mark_from_style(style: str):
    s = style.replace(" ", "").lower()
    if "font-weight:bold" in s or "font-weight:700" in s:
        return "bold"
    if "font-style:italic" in s:
        return "italic"
    if "text-decoration:underline" in s:
        return "underline"
    if "text-decoration:line-through" in s:
        return "strike"
    return None


def _align_of(tag: Tag):
    align = (tag.get("align") or "").lower()
    style = (tag.get("style") or "").replace(" ", "").lower()
    for part in style.split(";"):
        if part.startswith("text-align:"):
            align = part.split(":", 1)[1]
    return align if align in ("left", "center", "right", "justify") else None


def _with_align(node: dict, tag: Tag) -> dict:
    align = _align_of(tag)
    if align:
        node.setdefault("attrs", {})["textAlign"] = align
    return node


# ---------- DOCX -> tree ----------
def _style_map():
    return """
    p[style-name='Normal'] => p:fresh
    p[style-name='Title'] => h1:fresh
    """


def docx_to_doc(fileobj, warnings: list[str] | None = None) -> dict:
    """Convert an uploaded .docx (file-like) via mammoth's HTML output."""
    if warnings is None:
        warnings = []
    try:
        result = mammoth.convert_to_html(fileobj, style_map=_style_map())
    except Exception as e:
        logger.warning("[NORMALIZE] mammoth could not read DOCX: %s", e)
        warnings.append(f"DOCX file could not be read ({e}); using an empty document")
        return empty_doc()
    for msg in result.messages:
        logger.debug("[NORMALIZE] mammoth: %s", msg)
    return normalize_content({"html": result.value}, warnings)
