# backend/tests/test_placeholder_engine.py
import copy

from placeholder_engine import (
    assign_placeholder_ids, find_fields, find_tokens, has_unbound_fields, parse_payment_key,
)


def doc_of(*texts):
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": t}]}
                                       for t in texts]}


def texts(doc):
    out = []

    def walk(n):
        if n.get("type") == "text":
            out.append(n["text"])
        for c in n.get("content") or []:
            walk(c)
    walk(doc)
    return out


def test_adjacent_tokens_numbered_left_to_right():
    assert texts(assign_placeholder_ids(doc_of("{{text}}{{text}}"))) == ["{{text:text-1}}{{text:text-2}}"]


def test_counters_are_shared_across_the_tree():
    doc = doc_of("{{signature}} {{text}}")
    doc["content"].append({"type": "bulletList", "content": [{"type": "listItem", "content": [
        {"type": "paragraph", "content": [{"type": "text", "text": "{{ text }} and {{signature}}"}]}]}]})
    doc["content"].append({"type": "paragraph", "content": [{"type": "text", "text": "{{text}}"}]})
    assert texts(assign_placeholder_ids(doc)) == [
        "{{signature:signature-1}} {{text:text-1}}",
        "{{text:text-2}} and {{signature:signature-2}}",
        "{{text:text-3}}",
    ]


def test_assignment_is_idempotent_and_does_not_mutate():
    doc = doc_of("A {{text}}", "B {{signature}} {{text}}")
    before = copy.deepcopy(doc)
    once = assign_placeholder_ids(doc)
    assert assign_placeholder_ids(once) == once
    assert doc == before


def test_ids_are_deterministic():
    doc = doc_of("{{text}}", "{{text}}", "{{signature}}")
    assert assign_placeholder_ids(doc) == assign_placeholder_ids(copy.deepcopy(doc))


def test_numbering_continues_after_existing_ids():
    assert texts(assign_placeholder_ids(doc_of("{{text:text-3}} {{text}}"))) == ["{{text:text-3}} {{text:text-4}}"]


def test_bare_date_is_left_alone():
    doc = doc_of("Signed on {{date}}")
    assert assign_placeholder_ids(doc) == doc
    assert not has_unbound_fields(doc)


def test_find_fields_in_document_order():
    doc = assign_placeholder_ids(doc_of("{{signature}}", "{{text}} {{date:date-1}}"))
    doc["content"].append(doc_of("again {{text:text-1}}")["content"][0])
    assert find_fields(doc) == [
        {"kind": "signature", "id": "signature-1"},
        {"kind": "text", "id": "text-1"},
        {"kind": "date", "id": "date-1"},
    ]


def test_token_parsing_helpers():
    assert find_tokens("{{ Client_Name }} {{price_16+}} {{text:text-2}}") == [
        ("client_name", None), ("price_16+", None), ("text", "text-2")]
    assert parse_payment_key("payment_2_value") == (2, "value")
    assert parse_payment_key("payment_plan_row") is None
