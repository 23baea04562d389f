# backend/tests/test_normalizer.py
import json

from content_normalizer import normalize_content, html_to_doc

EMPTY = {"type": "doc", "content": []}


def para(*children):
    return {"type": "paragraph", "content": list(children)}


def text(s, *marks):
    node = {"type": "text", "text": s}
    if marks:
        node["marks"] = [{"type": m} for m in marks]
    return node


def test_html_object_becomes_paragraph():
    doc = normalize_content({"html": "<p>Hi</p>"})
    assert doc == {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "Hi"}]}]}


def test_canonical_doc_passes_through():
    src = {"type": "doc", "content": [para(text("a", "bold"))]}
    assert normalize_content(src) == src


def test_bare_array_and_single_node_are_wrapped():
    assert normalize_content([para(text("a"))]) == {"type": "doc", "content": [para(text("a"))]}
    assert normalize_content(para(text("b"))) == {"type": "doc", "content": [para(text("b"))]}


def test_json_string_is_parsed():
    raw = json.dumps({"type": "doc", "content": [para(text("x"))]})
    assert normalize_content(raw) == {"type": "doc", "content": [para(text("x"))]}


def test_non_json_string_is_treated_as_html():
    doc = normalize_content("<h2>Title</h2><p><b>Bold</b> text</p>")
    assert doc["content"] == [
        {"type": "heading", "attrs": {"level": 2}, "content": [text("Title")]},
        para(text("Bold", "bold"), text(" text")),
    ]


def test_doc_with_bad_content_is_coerced_to_empty():
    warnings = []
    assert normalize_content({"type": "doc", "content": "nope"}, warnings) == EMPTY
    assert warnings


def test_unrecognised_input_degrades_to_empty_doc_with_warning():
    for raw in (42, None, "", {"delta": {"ops": []}}, {"foo": 1}):
        warnings = []
        assert normalize_content(raw, warnings) == EMPTY
        assert warnings, raw


def test_delta_with_html_uses_the_html():
    doc = normalize_content({"delta": {"ops": [{"insert": "ignored"}]}, "html": "<p>Used</p>"})
    assert doc["content"] == [para(text("Used"))]


def test_unknown_wrapper_types_are_unwrapped():
    warnings = []
    doc = normalize_content({"type": "doc", "content": [{"type": "callout", "content": [para(text("in"))]}]},
                            warnings)
    assert doc["content"] == [para(text("in"))]
    assert any("callout" in w for w in warnings)


def test_heading_level_is_clamped():
    doc = normalize_content({"type": "doc", "content": [{"type": "heading", "attrs": {"level": 9}, "content": []}]})
    assert doc["content"][0]["attrs"]["level"] == 6


def test_html_breaks_alignment_and_loose_text():
    doc = html_to_doc('<p style="text-align: center">a<br>b</p><div>loose text</div><hr>')
    assert doc["content"] == [
        {"type": "paragraph", "attrs": {"textAlign": "center"},
         "content": [text("a"), {"type": "hardBreak"}, text("b")]},
        para(text("loose text")),
        {"type": "horizontalRule"},
    ]


def test_html_lists_and_noise():
    doc = html_to_doc("<style>p{}</style><ul><li><p>one</p></li><li>two</li></ul><script>x()</script>")
    assert doc["content"] == [{"type": "bulletList", "content": [
        {"type": "listItem", "content": [para(text("one"))]},
        {"type": "listItem", "content": [para(text("two"))]},
    ]}]


def test_tokens_survive_html_conversion():
    doc = normalize_content("<p>Dear {{client_name}},</p><p>Sign: {{signature}}</p>")
    assert doc["content"] == [para(text("Dear {{client_name}},")), para(text("Sign: {{signature}}"))]


def test_json_scalar_strings_are_text():
    for raw in ("42", "true", " 3.5 "):
        warnings = []
        doc = normalize_content(raw, warnings)
        assert doc["content"] == [para(text(raw.strip()))]
        assert warnings == []
