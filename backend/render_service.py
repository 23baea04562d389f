# backend/render_service.py
import html

from document_model import infer_direction, TEXT_ALIGNS
from placeholder_engine import TOKEN_RE

_BLOCK_TAGS = {
    "paragraph": "p",
    "bulletList": "ul",
    "orderedList": "ol",
    "listItem": "li",
    "blockquote": "blockquote",
}
_MARK_TAGS = {"bold": "strong", "italic": "em", "underline": "u", "strike": "s"}


def doc_to_html(doc: dict) -> str:
    """Preview HTML for a resolved tree. Remaining tokens are highlighted for click sync."""
    body = "".join(_node_html(n) for n in (doc.get("content") or []))
    wrapped = f"""
    <div class="docx-page">
      {body}
    </div>
    """
    return wrapped


def _node_html(node) -> str:
    if not isinstance(node, dict):
        return ""
    kind = node.get("type")
    if kind == "text":
        return _text_html(node)
    if kind == "hardBreak":
        return "<br>"
    if kind == "horizontalRule":
        return "<hr>"
    inner = "".join(_node_html(c) for c in (node.get("content") or []))
    if kind == "heading":
        tag = f"h{(node.get('attrs') or {}).get('level', 1)}"
    else:
        tag = _BLOCK_TAGS.get(kind)
    if tag is None:
        return inner
    return f"<{tag}{_block_attrs(node)}>{inner}</{tag}>"


def _block_attrs(node) -> str:
    if node.get("type") in ("bulletList", "orderedList", "listItem"):
        return ""
    attrs = node.get("attrs") or {}
    direction = infer_direction(node)
    out = ""
    if direction == "rtl":
        out += ' dir="rtl"'
    if attrs.get("textAlign") in TEXT_ALIGNS:
        out += f' style="text-align: {attrs["textAlign"]}"'
    return out


def _text_html(node) -> str:
    text = node.get("text") or ""

    # Highlight placeholders and add a data-key for click sync
    out, last = [], 0
    for m in TOKEN_RE.finditer(text):
        out.append(_lines(text[last:m.start()]))
        raw = m.group(0)
        out.append(f"<span class='ph' data-key='{_escape_attr(raw)}'>{html.escape(raw)}</span>")
        last = m.end()
    out.append(_lines(text[last:]))
    rendered = "".join(out)

    for mark in reversed(node.get("marks") or []):
        tag = _MARK_TAGS.get(mark.get("type"))
        if tag:
            rendered = f"<{tag}>{rendered}</{tag}>"
    return rendered


def _lines(s: str) -> str:
    return html.escape(s, quote=False).replace("\n", "<br>")


def _escape_attr(s: str) -> str:
    return s.replace("&", "&amp;").replace('"', '&quot;').replace("'", "&#39;").replace("<", "&lt;")
