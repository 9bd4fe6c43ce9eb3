"""Pipeline tokens registered at startup.

Network tokens block on urllib, so they run on a worker thread; their errors
propagate and the interpreter reports them as step errors.
"""

from __future__ import annotations

import asyncio
import urllib.parse
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from .errors import BackendError
from .indexer import WorkspaceIndex
from .llm import ChatModel
from .memory import MemoryStore
from .skills import SkillRegistry
from .tokens import PipelineState, TokenRegistry
from .util import short
from .web import http_get, http_get_json, normalize_url, strip_html

ARXIV_API = "http://export.arxiv.org/api/query"
WIKI_SUMMARY_API = "https://en.wikipedia.org/api/rest_v1/page/summary/"
S2_SEARCH_API = "https://api.semanticscholar.org/graph/v1/paper/search"

_ATOM = {"a": "http://www.w3.org/2005/Atom"}


def _need(arg: Optional[str], state: PipelineState, what: str) -> str:
    text = (arg or state.query or "").strip()
    if not text:
        raise ValueError(f"no {what} given")
    return text


def parse_arxiv_feed(xml_text: str) -> List[Dict[str, str]]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise BackendError("arXiv returned malformed XML") from e
    papers: List[Dict[str, str]] = []
    for entry in root.findall("a:entry", _ATOM):
        title = " ".join((entry.findtext("a:title", default="", namespaces=_ATOM) or "").split())
        summary = " ".join((entry.findtext("a:summary", default="", namespaces=_ATOM) or "").split())
        published = entry.findtext("a:published", default="", namespaces=_ATOM) or ""
        link = entry.findtext("a:id", default="", namespaces=_ATOM) or ""
        if title:
            papers.append({"title": title, "summary": summary, "year": published[:4], "url": link})
    return papers


def wiki_summary(topic: str) -> str:
    """`Title: extract` for a Wikipedia page, or "" when there is no summary."""
    data = http_get_json(WIKI_SUMMARY_API + urllib.parse.quote(topic.strip().replace(" ", "_")))
    extract = str(data.get("extract") or "").strip()
    if not extract:
        return ""
    return f"{data.get('title') or topic}: {extract}"


def _format_papers(papers: List[Dict[str, Any]]) -> str:
    lines = []
    for p in papers:
        year = f" ({p['year']})" if p.get("year") else ""
        lines.append(f"- {p['title']}{year}: {short(p.get('summary') or '', 200)}")
    return "\n".join(lines)


def register_builtin_tokens(
    registry: TokenRegistry,
    *,
    llm: Optional[ChatModel] = None,
    memory: Optional[MemoryStore] = None,
    skills: Optional[SkillRegistry] = None,
    index: Optional[WorkspaceIndex] = None,
    max_results: int = 5,
) -> TokenRegistry:
    @registry.token("ArxivSearch", "Search arXiv for papers on a topic")
    async def arxiv_search(state: PipelineState, arg: Optional[str]) -> PipelineState:
        q = _need(arg, state, "search query")
        params = {"search_query": f"all:{q}", "start": 0, "max_results": int(max_results)}
        feed = await asyncio.to_thread(http_get, ARXIV_API, params=params)
        papers = parse_arxiv_feed(feed)
        state.data["papers"] = papers
        state.output = _format_papers(papers) if papers else f"No arXiv papers found for '{q}'."
        return state

    @registry.token("WikiSearch", "Look up a topic summary on Wikipedia")
    async def wiki_search(state: PipelineState, arg: Optional[str]) -> PipelineState:
        q = _need(arg, state, "topic")
        found = await asyncio.to_thread(wiki_summary, q)
        state.output = found or f"No Wikipedia summary found for '{q}'."
        return state

    @registry.token("SemanticScholarSearch", "Search Semantic Scholar for papers and citation counts")
    async def s2_search(state: PipelineState, arg: Optional[str]) -> PipelineState:
        q = _need(arg, state, "search query")
        params = {"query": q, "limit": int(max_results), "fields": "title,year,citationCount,abstract"}
        data = await asyncio.to_thread(http_get_json, S2_SEARCH_API, params=params)
        papers = []
        for p in data.get("data") or []:
            title = str(p.get("title") or "").strip()
            if not title:
                continue
            cites = p.get("citationCount")
            papers.append(
                {
                    "title": title + (f" [{cites} citations]" if cites is not None else ""),
                    "year": str(p.get("year") or ""),
                    "summary": str(p.get("abstract") or ""),
                }
            )
        state.data["papers"] = papers
        state.output = _format_papers(papers) if papers else f"No Semantic Scholar results for '{q}'."
        return state

    @registry.token("Fetch", "Fetch a URL and keep its readable text")
    async def fetch(state: PipelineState, arg: Optional[str]) -> PipelineState:
        url = normalize_url(_need(arg, state, "URL"))
        body = await asyncio.to_thread(http_get, url)
        state.output = strip_html(body)
        state.data["url"] = url
        return state

    @registry.token("SetTopic", "Set the pipeline topic")
    def set_topic(state: PipelineState, arg: Optional[str]) -> PipelineState:
        state.topic = (arg or state.query or "").strip()
        return state

    if llm is not None:
        gen = llm

        @registry.token("Generate", "Generate text about a topic (uses previous output as context)")
        async def generate(state: PipelineState, arg: Optional[str]) -> PipelineState:
            ask = _need(arg, state, "prompt")
            context = f"Context:\n{short(state.output, 2000)}\n\n" if state.output and arg else ""
            prompt = f"### System\nWrite clearly and concisely.\n\n### Human\n{context}{ask}\n\n### Assistant\n"
            state.output = (await gen.agenerate(prompt, temperature=0.7, max_tokens=400)).strip()
            return state

        @registry.token("Summarize", "Summarize the previous output (or the given text)")
        async def summarize(state: PipelineState, arg: Optional[str]) -> PipelineState:
            text = state.output or (arg or "")
            if not text.strip():
                raise ValueError("nothing to summarize")
            prompt = (
                "### System\nSummarize the text in 3-5 sentences.\n\n"
                f"### Human\n{short(text, 4000)}\n\n### Assistant\n"
            )
            state.output = (await gen.agenerate(prompt, temperature=0.3, max_tokens=300)).strip()
            return state

    if skills is not None:
        sk = skills

        @registry.token("UseSkill", "Run a learned skill by name")
        def use_skill(state: PipelineState, arg: Optional[str]) -> PipelineState:
            name = _need(arg, state, "skill name")
            skill = sk.run(name)
            if skill is None:
                raise LookupError(f"unknown skill '{name}'")
            steps = "; ".join(s.action for s in skill.steps)
            state.output = f"{skill.name}: {skill.description}" + (f" (steps: {steps})" if steps else "")
            return state

    if memory is not None:
        mem = memory

        @registry.token("Remember", "Store the current output as an episode")
        async def remember(state: PipelineState, arg: Optional[str]) -> PipelineState:
            context = (arg or state.query or state.topic or "pipeline").strip()
            outcome = state.output or context
            eid = await asyncio.to_thread(
                mem.store_episode, "pipeline", context, outcome, {"summary": short(f"{context} → {outcome}", 120)}
            )
            state.data["episode_id"] = eid
            return state

    if index is not None:
        idx = index

        @registry.token("IndexSearch", "Search the indexed workspace")
        async def index_search(state: PipelineState, arg: Optional[str]) -> PipelineState:
            q = _need(arg, state, "search query")
            hits = await asyncio.to_thread(idx.search, q)
            state.output = "\n".join(f"{h.path}#{h.chunk_index} ({h.score:.2f}): {short(h.content, 200)}" for h in hits)
            return state

    return registry
