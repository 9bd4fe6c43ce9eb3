"""Pipe-chained DSL interpreter and the natural-language front end that feeds it.

Surface syntax::

    ArxivSearch 'neural networks' | Summarize
    WikiSearch "quantum computing"
    Fetch https://example.org

Steps run left to right over one shared `PipelineState`. A failing step is
reported and skipped; it never aborts the chain.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

from .errors import PipelineSyntaxError, UnknownTokenError
from .fuzzy import containment_suggestions
from .logging_utils import log
from .tokens import PipelineState, TokenRegistry
from .util import innermost, preview

_STEP_RE = re.compile(r"^(\w+)\s*(?:'([^']*)'|\"([^\"]*)\"|(.*))?$", re.DOTALL)

OUTPUT_PREVIEW_CHARS = 300
TOKEN_LIST_LIMIT = 15

_PIPELINE_HINTS = (
    "pipeline",
    "token",
    "example",
    "how do i use",
    "how to use",
    "show me how",
    "what can you do",
    "capabilities",
    "commands",
)


def parse_step(segment: str) -> Tuple[str, str]:
    """Split one pipeline segment into `(name, argument)`; quoted forms win over the bare remainder."""
    m = _STEP_RE.match(segment.strip())
    if not m:
        raise PipelineSyntaxError(segment)
    name = m.group(1)
    for g in (m.group(2), m.group(3)):
        if g is not None:
            return name, g
    return name, (m.group(4) or "").strip()


def split_pipeline(text: str) -> List[str]:
    return [p.strip() for p in text.split("|") if p.strip()]


def is_pipeline_related(text: str) -> bool:
    lower = (text or "").lower()
    return any(h in lower for h in _PIPELINE_HINTS)


@dataclass
class StepReport:
    index: int
    name: str
    status: str  # ok | error | unknown | invalid
    message: str = ""
    suggestions: List[str] = field(default_factory=list)

    def render(self) -> str:
        if self.status == "error":
            return f"Step error: {self.message}"
        if self.status == "unknown":
            line = f"Unknown token: {self.name}"
            if self.suggestions:
                line += f"\nDid you mean: {', '.join(self.suggestions)}?"
            return line
        if self.status == "invalid":
            return f"Invalid syntax: {self.message}"
        return ""


@dataclass
class PipelineRun:
    steps: List[StepReport]
    state: PipelineState

    @property
    def summary(self) -> str:
        n = len(self.steps)
        out = self.state.output or ""
        if out:
            return f"I ran your {n}-step pipeline. Here's what I found: {preview(out, OUTPUT_PREVIEW_CHARS)}"
        return f"I ran your {n}-step pipeline successfully."

    def render(self) -> str:
        problems = [s.render() for s in self.steps if s.status != "ok"]
        return "\n".join(problems + [self.summary])


class PipelineInterpreter:
    """Runs DSL text against a `TokenRegistry` and owns the session's pipeline state."""

    def __init__(self, registry: TokenRegistry, state: Optional[PipelineState] = None):
        self.registry = registry
        self.state = state if state is not None else PipelineState()
        # Set by token listing/help so the next conversational prompt carries usage hints.
        self.last_context: Optional[str] = None

    def lookup(self, name: str):
        info = self.registry.get(name)
        if info is None:
            raise UnknownTokenError(name, containment_suggestions(name, self.registry.names()))
        return info

    async def _invoke(self, name: str, arg: str, state: PipelineState) -> PipelineState:
        info = self.lookup(name)
        if arg:
            state.query = arg
            state.prompt = arg
        return await info.invoke(state, arg or None)

    async def run(self, text: str) -> PipelineRun:
        segments = split_pipeline(text)
        state = self.state
        reports: List[StepReport] = []
        for i, seg in enumerate(segments):
            try:
                name, arg = parse_step(seg)
            except PipelineSyntaxError:
                reports.append(StepReport(i, seg, "invalid", message=seg))
                continue
            try:
                state = await self._invoke(name, arg, state)
                reports.append(StepReport(i, name, "ok"))
            except UnknownTokenError as e:
                reports.append(StepReport(i, name, "unknown", suggestions=e.suggestions))
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                root = innermost(e)
                log.warning(
                    "pipeline step failed",
                    extra={"extra": {"step": name, "index": i, "err": f"{type(root).__name__}: {root}"}},
                )
                reports.append(StepReport(i, name, "error", message=str(root)))
        self.state = state
        log.debug(
            "pipeline finished",
            extra={"extra": {"steps": len(reports), "failed": sum(1 for r in reports if r.status != "ok")}},
        )
        return PipelineRun(reports, state)

    async def run_single(self, text: str) -> Optional[str]:
        """Execute one `Name [arg]` step; `None` when the text is not a known token invocation."""
        try:
            name, arg = parse_step(text)
        except PipelineSyntaxError:
            return None
        if name not in self.registry:
            return None
        try:
            self.state = await self._invoke(name, arg, self.state)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            root = innermost(e)
            log.warning("token failed", extra={"extra": {"token": name, "err": str(root)}})
            return f"Error executing {name}: {root}"
        out = self.state.output or ""
        if out:
            return f"I executed {name}. Result: {preview(out, OUTPUT_PREVIEW_CHARS)}"
        return f"I executed {name} successfully."

    def list_tokens(self) -> str:
        infos = list(self.registry)
        lines = [f"  {t.name}: {t.description}" for t in infos[:TOKEN_LIST_LIMIT]]
        if len(infos) > TOKEN_LIST_LIMIT:
            lines.append(f"  ... and {len(infos) - TOKEN_LIST_LIMIT} more")
        self.last_context = "pipeline_tokens"
        head = (
            f"I have {len(infos)} pipeline tokens available. "
            "Try commands like 'ArxivSearch neural networks' or chain them with pipes!"
        )
        return head + ("\n" + "\n".join(lines) if lines else "")

    def help_text(self) -> str:
        self.last_context = "pipeline_help"
        return "\n".join(
            [
                "Pipelines chain tokens with '|'; each step sees the previous step's output.",
                "Examples:",
                "  ArxivSearch 'neural networks' | Summarize",
                "  WikiSearch \"quantum computing\"",
                "  Fetch https://example.org | Summarize",
                "  Generate 'a haiku about autumn'",
                "Quote arguments with '...' or \"...\", or just write them after the token name.",
                f"I know {len(self.registry)} tokens; say 'tokens' to list them.",
            ]
        )


class NLTranslator:
    """Maps informal phrasing onto a single `Token 'argument'` invocation."""

    _PATTERNS: List[Tuple[Pattern[str], str, int]] = [
        (re.compile(r"search\s+(?:arxiv|papers?|research)\s+(?:for\s+)?(.+)", re.I), "ArxivSearch", 1),
        (re.compile(r"find\s+(?:papers?|research)\s+(?:on|about)\s+(.+)", re.I), "ArxivSearch", 1),
        (re.compile(r"(?:arxiv|papers?)\s+(?:on|about|for)\s+(.+)", re.I), "ArxivSearch", 1),
        (re.compile(r"research\s+(.+)\s+papers?", re.I), "ArxivSearch", 1),
        (re.compile(r"search\s+wiki(?:pedia)?\s+(?:for\s+)?(.+)", re.I), "WikiSearch", 1),
        (re.compile(r"(?:look\s+up|lookup)\s+(.+)\s+(?:on\s+)?wiki(?:pedia)?", re.I), "WikiSearch", 1),
        (re.compile(r"what\s+(?:is|are)\s+(.+)\s+(?:according\s+to\s+)?wiki(?:pedia)?", re.I), "WikiSearch", 1),
        (re.compile(r"wiki(?:pedia)?\s+(.+)", re.I), "WikiSearch", 1),
        (re.compile(r"search\s+semantic\s+scholar\s+(?:for\s+)?(.+)", re.I), "SemanticScholarSearch", 1),
        (re.compile(r"find\s+citations?\s+(?:for|about)\s+(.+)", re.I), "SemanticScholarSearch", 1),
        (re.compile(r"fetch\s+(?:url\s+)?(.+)", re.I), "Fetch", 1),
        (re.compile(r"get\s+(?:content\s+from|page)\s+(.+)", re.I), "Fetch", 1),
        (re.compile(r"download\s+(.+)", re.I), "Fetch", 1),
        (re.compile(r"generate\s+(?:text\s+)?(?:about|on|for)\s+(.+)", re.I), "Generate", 1),
        (re.compile(r"write\s+(?:about|on)\s+(.+)", re.I), "Generate", 1),
        (re.compile(r"summarize\s+(.+)", re.I), "Summarize", 1),
        (re.compile(r"give\s+(?:me\s+)?(?:a\s+)?summary\s+(?:of\s+)?(.+)", re.I), "Summarize", 1),
        (re.compile(r"use\s+skill\s+(.+)", re.I), "UseSkill", 1),
        (re.compile(r"apply\s+skill\s+(.+)", re.I), "UseSkill", 1),
    ]

    def __init__(self, registry: TokenRegistry):
        self.registry = registry

    def translate(self, text: str) -> Optional[str]:
        for pattern, token, group in self._PATTERNS:
            if token not in self.registry:
                continue
            m = pattern.search(text)
            if not m:
                continue
            arg = m.group(group).strip()
            log.debug("nl translation", extra={"extra": {"token": token, "pattern": pattern.pattern}})
            if "'" in arg:
                return f'{token} "{arg}"'
            return f"{token} '{arg}'"
        return None
