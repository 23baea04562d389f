# backend/tests/test_cleanup.py
from cleanup import clean_document
from placeholder_engine import find_fields


def p(*children):
    return {"type": "paragraph", "content": list(children)}


def t(s):
    return {"type": "text", "text": s}


def test_empty_text_and_emptied_paragraph_removed():
    doc = {"type": "doc", "content": [p(t("keep")), p(t("")), p(t("   "), t(""))]}
    assert clean_document(doc) == {"type": "doc", "content": [p(t("keep"))]}


def test_originally_empty_paragraph_kept():
    doc = {"type": "doc", "content": [p(t("a")), p(), p(t("b"))]}
    assert clean_document(doc) == doc


def test_paragraph_with_other_children_survives():
    doc = {"type": "doc", "content": [p(t(""), {"type": "hardBreak"})]}
    assert clean_document(doc) == {"type": "doc", "content": [p({"type": "hardBreak"})]}


def test_nested_lists_cleaned_post_order():
    doc = {"type": "doc", "content": [{"type": "bulletList", "content": [
        {"type": "listItem", "content": [p(t(" "))]},
        {"type": "listItem", "content": [p(t("x"))]},
    ]}]}
    cleaned = clean_document(doc)
    items = cleaned["content"][0]["content"]
    assert items[0] == {"type": "listItem", "content": []}
    assert items[1] == {"type": "listItem", "content": [p(t("x"))]}


def test_field_tokens_are_never_removed():
    doc = {"type": "doc", "content": [
        p(t("{{text:text-1}}")), p(t(" {{signature:signature-1}} ")), p(t("{{date:date-1}}")), p(t("")),
    ]}
    cleaned = clean_document(doc)
    assert find_fields(cleaned) == find_fields(doc)
    assert len(cleaned["content"]) == 3
