"""Deterministic clean-up of raw backend output before it reaches the user.

Small local models echo the prompt, leak transcript headers, repeat lines and
fall back to canned assistant disclaimers. Each step below removes one of
those artifacts; running the cleaner on its own output changes nothing.
"""

from __future__ import annotations

import re
from typing import List

EMPTY_INPUT_REPLY = "I'm here. What would you like to talk about?"
ECHO_REPLY = "Hey there! What's up?"
REFUSAL_REPLY = "I'm here with you. What would you like to explore?"
EMPTY_OUTPUT_REPLY = "I'm listening. Tell me more."

_ROLE_HEADER = re.compile(r"###\s*(System|Human|Assistant)\s*", re.IGNORECASE)
_FALLBACK_MARKER = re.compile(r"^\[(?:ollama-)?fallback[^\]]*\]\s*", re.IGNORECASE)
_LAST_ASSISTANT = "### assistant"

# Signatures are lower-case; text is lower-cased before comparing.
_ECHO_SIGNATURES = (
    "friendly ai companion",
    "current mood:",
    "keep responses concise",
    "core identity:",
    "behavioral guidelines:",
)
_SELF_ID_PREFIXES = ("i am an ai", "as an ai", "i'm an ai")
_REFUSALS = ("i cannot answer that question", "i am an ai assistant designed to provide helpful and harmless")
# Removing one artifact can expose another ("Iris: As an AI ..."), so passes repeat until
# nothing changes. Every pass only removes text or lands on a canned reply, which is stable.


def _strip_marker(text: str) -> str:
    # "[ollama-fallback: ...] real text" prefixes added by proxies.
    return _FALLBACK_MARKER.sub("", text, count=1)


def _after_last_assistant(text: str) -> str:
    idx = text.lower().rfind(_LAST_ASSISTANT)
    if idx < 0:
        return text
    return text[idx + len(_LAST_ASSISTANT) :].strip()


def _is_echo(text: str, persona_name: str) -> bool:
    lower = text.lower()
    if any(sig in lower for sig in _ECHO_SIGNATURES):
        return True
    return bool(persona_name) and lower.startswith(f"you are {persona_name.lower()}")


def _keep_if_any(lines: List[str], kept: List[str]) -> List[str]:
    return kept if kept else lines


def _dedupe_consecutive(lines: List[str]) -> List[str]:
    out: List[str] = []
    prev = None
    for line in lines:
        key = line.strip()
        if key == prev:
            continue
        out.append(line)
        prev = key
    return out


def _is_self_id(line: str, persona_name: str) -> bool:
    s = line.strip().lower()
    if s.startswith(_SELF_ID_PREFIXES):
        return True
    return bool(persona_name) and s.startswith(f"i am {persona_name.lower()}") and len(s) < 80


def _is_transcript_line(line: str) -> bool:
    s = line.lstrip()
    return s.lower().startswith("human:") or s.startswith("###")


def _clean_once(text: str, persona_name: str) -> str:
    text = _strip_marker(text.strip())
    text = _after_last_assistant(text)
    text = _ROLE_HEADER.sub("", text).strip()

    if _is_echo(text, persona_name):
        return ECHO_REPLY

    lines = text.split("\n")
    lines = _keep_if_any(lines, [ln for ln in lines if not _is_self_id(ln, persona_name)])
    text = "\n".join(lines).strip()

    prefix = f"{persona_name}:".lower()
    if persona_name and text.lower().startswith(prefix):
        text = text[len(prefix) :].strip()

    lines = text.split("\n")
    lines = _keep_if_any(lines, [ln for ln in lines if not _is_transcript_line(ln)])
    text = "\n".join(_dedupe_consecutive(lines)).strip()

    lower = text.lower()
    if any(sig in lower for sig in _REFUSALS):
        return REFUSAL_REPLY
    if not text:
        return EMPTY_OUTPUT_REPLY
    return text


def clean_response(raw: str, persona_name: str = "") -> str:
    if raw is None or not raw.strip():
        return EMPTY_INPUT_REPLY

    text = raw
    while True:
        cleaned = _clean_once(text, persona_name)
        if cleaned == text:
            return text
        text = cleaned
