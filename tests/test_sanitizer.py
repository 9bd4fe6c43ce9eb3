from __future__ import annotations

import pytest

from cogshell.sanitizer import (
    ECHO_REPLY,
    EMPTY_INPUT_REPLY,
    EMPTY_OUTPUT_REPLY,
    REFUSAL_REPLY,
    clean_response,
)


def test_empty_input():
    assert clean_response("") == EMPTY_INPUT_REPLY
    assert clean_response("   \n ") == EMPTY_INPUT_REPLY


def test_consecutive_duplicate_lines_collapse():
    assert clean_response("a\na\nb\nb\nb\nc") == "a\nb\nc"


def test_keeps_text_after_last_assistant_header():
    raw = "### System\nbe nice\n### Human\nhi\n### Assistant\nHello! Nice to meet you."
    assert clean_response(raw, "Iris") == "Hello! Nice to meet you."


def test_strips_fallback_marker():
    assert clean_response("[ollama-fallback: timeout] Sure thing.") == "Sure thing."


def test_prompt_echo_is_replaced():
    assert clean_response("You are Iris, a conversational mind.", "Iris") == ECHO_REPLY
    assert clean_response("CORE IDENTITY:\nsomething") == ECHO_REPLY
    assert clean_response("my current mood: fine") == ECHO_REPLY


def test_drops_ai_self_identification_lines():
    raw = "As an AI, I have no feelings.\nBut rivers are fascinating."
    assert clean_response(raw) == "But rivers are fascinating."


def test_keeps_self_identification_when_it_is_everything():
    assert clean_response("As an AI, I have no feelings.") == "As an AI, I have no feelings."


def test_strips_persona_prefix_and_transcript_lines():
    raw = "Iris: I love that idea.\nHuman: what next?"
    assert clean_response(raw, "Iris") == "I love that idea."


def test_canned_refusal_is_replaced():
    assert clean_response("I cannot answer that question.") == REFUSAL_REPLY


def test_bare_header_becomes_listening_reply():
    assert clean_response("### Assistant") == EMPTY_OUTPUT_REPLY


@pytest.mark.parametrize(
    "raw",
    [
        "a\na\nb\nb\nb\nc",
        "### Human\nhi\n### Assistant\nIris: Hello there!\nHello there!",
        "[note] ### Assistant\nAs an AI I think\nsure\nsure",
        "You are Iris, hi",
        "",
        "I cannot answer that question",
        "[a] [b] the answer",
        "[docs](https://example.org) explain the API.",
        "Iris: As an AI I think\nrivers are long",
    ],
)
def test_cleaning_is_idempotent(raw):
    once = clean_response(raw, "Iris")
    assert clean_response(once, "Iris") == once


def test_leading_brackets_that_are_not_markers_survive():
    assert clean_response("[docs](https://example.org) explain the API.") == "[docs](https://example.org) explain the API."
    assert clean_response("[1] Smith et al. found otherwise.") == "[1] Smith et al. found otherwise."
    assert clean_response("[Fallback: local] Fine.") == "Fine."


def test_signatures_match_any_case():
    assert clean_response("AS AN AI, I lack feelings.\nBut I like this question.") == "But I like this question."
    assert clean_response("i am iris.\nGlad you asked.", "Iris") == "Glad you asked."
    assert clean_response("iris: hello there", "Iris") == "hello there"
    assert clean_response("YOU ARE IRIS, a mind.", "Iris") == ECHO_REPLY
    assert clean_response("Sure.\nhuman: and then?") == "Sure."
    assert clean_response("I CANNOT ANSWER THAT QUESTION.") == REFUSAL_REPLY


def test_artifacts_exposed_by_a_pass_are_removed():
    assert clean_response("Iris: As an AI I think\nrivers are long", "Iris") == "rivers are long"
