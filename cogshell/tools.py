from __future__ import annotations

import ast
import asyncio
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ToolError
from .event_bus import TOOL_CREATED, EventBus
from .fuzzy import nearest
from .llm import ChatModel
from .logging_utils import log
from .memory import MemoryStore
from .util import innermost, preview, short, toks
from .web import duckduckgo_search, http_get, normalize_url, strip_html


class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolOutcome(BaseModel):
    ok: bool
    output: Dict[str, Any] = Field(default_factory=dict)
    text: str = ""
    error: Optional[str] = None
    tool: Optional[str] = None


def _default_render(out: BaseModel) -> str:
    return json.dumps(out.model_dump(), ensure_ascii=False, indent=2, default=str)


@dataclass(frozen=True)
class ToolSpec:
    """
    A dynamic tool: validated input model in, output model out.

    `keywords` feed goal matching for "smart tool"; `render` turns the output
    into the text shown to the user.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    handler: Callable[[Any], BaseModel]
    keywords: Tuple[str, ...] = ()
    render: Callable[[Any], str] = _default_render
    origin: str = "builtin"  # builtin | generated

    @property
    def schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    def primary_field(self) -> Optional[str]:
        """First required string field; bare text arguments are bound to it."""
        schema = self.schema
        props = schema.get("properties") or {}
        for name in schema.get("required") or []:
            if (props.get(name) or {}).get("type") == "string":
                return str(name)
        return None


class ToolRegistry:
    def __init__(self, memory: Optional[MemoryStore] = None, bus: Optional[EventBus] = None):
        self.memory = memory
        self.bus = bus
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec, *, replace_existing: bool = False) -> ToolSpec:
        if spec.name in self._tools and not replace_existing:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        return spec

    def get(self, name: str) -> Optional[ToolSpec]:
        spec = self._tools.get(name)
        if spec is not None:
            return spec
        # Router input is lower-cased before it gets here.
        lower = (name or "").lower()
        for n, s in self._tools.items():
            if n.lower() == lower:
                return s
        return None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def all(self) -> List[ToolSpec]:
        return list(self._tools.values())

    def list_tools(self) -> List[Dict[str, Any]]:
        return [
            {"name": s.name, "description": s.description, "origin": s.origin, "input_schema": s.schema}
            for s in self._tools.values()
        ]

    def record_use(self, tool: str, ok: bool, skill: Optional[str]) -> None:
        if self.memory is None:
            return
        try:
            self.memory.record_tool_use(tool, ok, skill=skill)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("tool usage not recorded", extra={"extra": {"tool": tool, "err": str(e)}})

    def execute(self, call: ToolCall, *, skill: Optional[str] = None) -> ToolOutcome:
        spec = self.get(call.name)
        if not spec:
            return ToolOutcome(ok=False, error=f"Unknown tool: {call.name}", tool=call.name)

        try:
            inp = spec.input_model(**call.arguments)
        except ValidationError as e:
            self.record_use(spec.name, False, skill)
            return ToolOutcome(ok=False, error=f"Invalid tool args: {e}", tool=spec.name)

        try:
            out = spec.handler(inp)
            out = spec.output_model(**out.model_dump())
        except Exception as e:  # pylint: disable=broad-exception-caught
            root = innermost(e)
            log.warning("tool failed", extra={"extra": {"tool": spec.name, "err": f"{type(root).__name__}: {root}"}})
            self.record_use(spec.name, False, skill)
            return ToolOutcome(ok=False, error=str(root) or type(root).__name__, tool=spec.name)

        self.record_use(spec.name, True, skill)
        return ToolOutcome(ok=True, output=out.model_dump(), text=spec.render(out), tool=spec.name)

    async def aexecute(self, call: ToolCall, *, skill: Optional[str] = None) -> ToolOutcome:
        return await asyncio.to_thread(self.execute, call, skill=skill)

    @staticmethod
    def parse_arguments(spec: ToolSpec, raw: str) -> Dict[str, Any]:
        """JSON object text, or bare text bound to the tool's primary string field."""
        raw = (raw or "").strip()
        if raw.startswith("{"):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ToolError(f"Could not parse tool input as JSON: {e.msg}") from e
            if not isinstance(data, dict):
                raise ToolError("Tool input must be a JSON object.")
            return data
        field = spec.primary_field()
        if field is None:
            return {}
        return {field: raw}

    def usage(self, spec: ToolSpec) -> str:
        return (
            f"**Tool: {spec.name}**\n\n{spec.description}\n\n**Required input format:**\n"
            f"```json\n{json.dumps(spec.schema, indent=2)}\n```\n\n"
            f'Example: `tool {spec.name} {{"param": "value"}}`'
        )

    async def use(self, name: str, raw_input: str) -> str:
        """The `tool NAME [args]` command: suggestion on a miss, usage on empty input."""
        spec = self.get(name)
        if spec is None:
            available = self.names()
            closest = nearest(name, available)
            return (
                f"I don't have a tool called '{name}'. Did you mean '{closest}'?\n\n"
                f"Available tools include: {', '.join(available[:10])}"
            )
        raw = (raw_input or "").strip()
        if (not raw or raw == "{}") and spec.schema.get("required"):
            return self.usage(spec)
        try:
            args = self.parse_arguments(spec, raw)
        except ToolError as e:
            return f"**{spec.name} failed:**\n\n{e}"
        out = await self.aexecute(ToolCall(name=spec.name, arguments=args))
        if out.ok:
            return f"**{spec.name} result:**\n\n{out.text}"
        return f"**{spec.name} failed:**\n\n{out.error}"

    def find_best(self, goal: str) -> Optional[ToolSpec]:
        """Tool whose name, description and keywords share the most words with `goal`."""
        want = {t for t in toks(goal) if len(t) > 2}
        if not want:
            return None
        best: Optional[ToolSpec] = None
        best_score = 0
        for spec in self._tools.values():
            have = set(toks(spec.name.replace("_", " "))) | set(toks(spec.description)) | set(spec.keywords)
            score = len(want & have)
            if score > best_score:
                best, best_score = spec, score
        return best


# ---- calculator ----

_ALLOWED_FUNCS: Dict[str, Any] = {
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "pi": math.pi,
    "e": math.e,
    "abs": abs,
    "round": round,
}


class _SafeEval(ast.NodeVisitor):
    def visit(self, node):  # type: ignore[override]
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
                return float(node.value)
            raise ValueError("Only numeric constants allowed.")
        if isinstance(node, ast.BinOp):
            a = self.visit(node.left)
            b = self.visit(node.right)
            if isinstance(node.op, ast.Add):
                return a + b
            if isinstance(node.op, ast.Sub):
                return a - b
            if isinstance(node.op, ast.Mult):
                return a * b
            if isinstance(node.op, ast.Div):
                return a / b
            if isinstance(node.op, ast.FloorDiv):
                return a // b
            if isinstance(node.op, ast.Mod):
                return a % b
            if isinstance(node.op, ast.Pow):
                if abs(b) > 1000:
                    raise ValueError("Exponent too large.")
                return a**b
            raise ValueError("Operator not allowed.")
        if isinstance(node, ast.UnaryOp):
            v = self.visit(node.operand)
            if isinstance(node.op, ast.UAdd):
                return +v
            if isinstance(node.op, ast.USub):
                return -v
            raise ValueError("Unary op not allowed.")
        if isinstance(node, ast.Name):
            if node.id in _ALLOWED_FUNCS and isinstance(_ALLOWED_FUNCS[node.id], (int, float)):
                return float(_ALLOWED_FUNCS[node.id])
            raise ValueError(f"Name not allowed: {node.id}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise ValueError("Only simple function calls allowed.")
            fn = node.func.id
            if fn not in _ALLOWED_FUNCS or not callable(_ALLOWED_FUNCS[fn]):
                raise ValueError(f"Function not allowed: {fn}")
            args = [self.visit(a) for a in node.args]
            return float(_ALLOWED_FUNCS[fn](*args))
        raise ValueError(f"Expression element not allowed: {type(node).__name__}")


def normalize_expression(expr: str) -> str:
    return (expr or "").strip().replace("×", "*").replace("÷", "/").replace("^", "**")


def safe_eval(expr: str) -> float:
    """Evaluate arithmetic without `eval`; raises ValueError, SyntaxError or ZeroDivisionError."""
    tree = ast.parse(normalize_expression(expr), mode="eval")
    return float(_SafeEval().visit(tree))


class CalcIn(BaseModel):
    expression: str


class CalcOut(BaseModel):
    result: float
    normalized_expression: str


def calc_handler(inp: CalcIn) -> CalcOut:
    expr = normalize_expression(inp.expression)
    return CalcOut(result=safe_eval(expr), normalized_expression=expr)


def _render_calc(out: CalcOut) -> str:
    r = int(out.result) if float(out.result).is_integer() else out.result
    return f"{out.normalized_expression} = {r}"


# ---- web search ----


class WebSearchIn(BaseModel):
    query: str
    k: int = 5

    @field_validator("k")
    @classmethod
    def _clamp_k(cls, v: int) -> int:
        return max(1, min(10, int(v)))


class WebSearchResult(BaseModel):
    title: str
    url: str
    snippet: str = ""


class WebSearchOut(BaseModel):
    query: str
    results: List[WebSearchResult] = Field(default_factory=list)


def web_search_handler(inp: WebSearchIn) -> WebSearchOut:
    hits = duckduckgo_search(inp.query, k=inp.k)
    return WebSearchOut(query=inp.query, results=[WebSearchResult(**h) for h in hits])


def _render_search(out: WebSearchOut) -> str:
    if not out.results:
        return "No results found."
    lines = []
    for i, r in enumerate(out.results, start=1):
        lines.append(f"{i}. {r.title}\n   {r.url}" + (f"\n   {short(r.snippet, 200)}" if r.snippet else ""))
    return "\n".join(lines)


# ---- url fetch ----


class UrlFetchIn(BaseModel):
    url: str
    max_chars: int = 4000


class UrlFetchOut(BaseModel):
    url: str
    text: str


def url_fetch_handler(inp: UrlFetchIn) -> UrlFetchOut:
    url = normalize_url(inp.url)
    body = http_get(url)
    return UrlFetchOut(url=url, text=preview(strip_html(body), int(inp.max_chars)))


# ---- LLM-backed tools ----


class LlmToolIn(BaseModel):
    input: str


class LlmToolOut(BaseModel):
    text: str


def make_llm_handler(llm: ChatModel, name: str, description: str) -> Callable[[LlmToolIn], LlmToolOut]:
    def _h(inp: LlmToolIn) -> LlmToolOut:
        prompt = (
            f"### System\nYou are the tool '{name}'. {description}\n"
            "Do the task directly and return only the result.\n\n"
            f"### Human\n{inp.input}\n\n### Assistant\n"
        )
        return LlmToolOut(text=llm.generate_text(prompt, temperature=0.3, max_tokens=400).strip())

    return _h


def builtin_tools() -> List[ToolSpec]:
    return [
        ToolSpec(
            name="calculator",
            description="Evaluate an arithmetic expression (supports sqrt, log, sin, cos, pi, e).",
            input_model=CalcIn,
            output_model=CalcOut,
            handler=calc_handler,
            keywords=("calculate", "math", "compute", "arithmetic", "sum", "multiply"),
            render=_render_calc,
        ),
        ToolSpec(
            name="web_search",
            description="Search the web via DuckDuckGo and return titles, URLs and snippets.",
            input_model=WebSearchIn,
            output_model=WebSearchOut,
            handler=web_search_handler,
            keywords=("search", "web", "google", "find", "lookup", "internet"),
            render=_render_search,
        ),
        ToolSpec(
            name="url_fetch",
            description="Fetch a web page and return its readable text.",
            input_model=UrlFetchIn,
            output_model=UrlFetchOut,
            handler=url_fetch_handler,
            keywords=("fetch", "url", "http", "page", "download", "website"),
            render=lambda out: out.text,
        ),
    ]


_NAME_STOPWORDS = frozenset(
    ["that", "this", "with", "from", "into", "about", "tool", "create", "make", "build", "would", "could", "should", "please"]
)


def _cap(w: str) -> str:
    return w[:1].upper() + w[1:].lower()


def _identifier(name: str) -> str:
    return re.sub(r"\W+", "", name or "")


def tool_name_from_description(description: str) -> str:
    ws = [_cap(_identifier(w)) for w in (description or "").split() if len(w) > 3]
    name = "".join(ws[:3]) + "Tool"
    return name if len(name) >= 6 else "CustomTool"


def tool_name_from_topic(topic: str) -> str:
    return _identifier((topic or "").replace(" ", "")) + "Tool"


def topic_from_description(description: str) -> str:
    ws = [
        _cap(w)
        for w in (description or "").split()
        if len(w) > 3 and w.lower() not in _NAME_STOPWORDS
    ][:2]
    return "".join(ws) or "Custom"


class ToolFactory:
    """Creates tools on request: built-in kinds by name hint, anything else backed by the LLM."""

    def __init__(self, registry: ToolRegistry, llm: Optional[ChatModel] = None, bus: Optional[EventBus] = None):
        self.registry = registry
        self.llm = llm
        self.bus = bus

    def _by_hint(self, hint: str) -> Optional[ToolSpec]:
        n = (hint or "").lower()
        kinds = {s.name: s for s in builtin_tools()}
        if "search" in n or "google" in n or "web" in n:
            return kinds["web_search"]
        if "fetch" in n or "url" in n or "http" in n:
            return kinds["url_fetch"]
        if "calc" in n or "math" in n:
            return kinds["calculator"]
        return None

    def create_llm_tool(self, name: str, description: str) -> ToolSpec:
        if self.llm is None:
            raise RuntimeError("no generation backend is available for custom tools")
        name = _identifier(name) or "CustomTool"
        spec = ToolSpec(
            name=name,
            description=description,
            input_model=LlmToolIn,
            output_model=LlmToolOut,
            handler=make_llm_handler(self.llm, name, description),
            keywords=tuple(t for t in toks(description) if len(t) > 3),
            render=lambda out: out.text,
            origin="generated",
        )
        self._install(spec)
        return spec

    def _install(self, spec: ToolSpec) -> None:
        self.registry.register(spec, replace_existing=True)
        log.info("tool created", extra={"extra": {"tool": spec.name, "origin": spec.origin}})
        if self.bus is not None:
            self.bus.publish(TOOL_CREATED, {"tool": spec.name, "description": spec.description})

    def add_tool(self, hint: str) -> str:
        spec = self._by_hint(hint)
        if spec is not None:
            self._install(spec)
            return f"I created a new {spec.name} tool. It's ready to use."
        description = f"A tool named {hint} that performs operations related to {hint}"
        try:
            created = self.create_llm_tool(hint, description)
        except RuntimeError as e:
            return f"I couldn't create a '{hint}' tool. Error: {e}"
        return f"I created a custom '{created.name}' tool using AI. It's ready to use."

    def create_from_description(self, description: str) -> str:
        name = tool_name_from_description(description)
        try:
            created = self.create_llm_tool(name, description)
        except RuntimeError as e:
            return f"I couldn't create that tool. Error: {e}"
        return f"Done! I created a '{created.name}' tool that {description}. It's ready to use."

    def create_from_context(self, topic: str, description: str) -> str:
        try:
            created = self.create_llm_tool(tool_name_from_topic(topic), description)
        except RuntimeError as e:
            return f"I couldn't create that tool. {e}"
        return f"Done! I created '{created.name}'. It's ready to use."

    def smart_tool(self, goal: str) -> str:
        spec = self.registry.find_best(goal)
        if spec is not None:
            self.registry.record_use(spec.name, True, None)
            return f"I found the best tool for that: {spec.name}."
        try:
            created = self.create_llm_tool(tool_name_from_description(goal), goal)
        except RuntimeError as e:
            return f"I couldn't find a suitable tool for '{goal}'. {e}"
        return f"I found the best tool for that: {created.name}."


@dataclass(frozen=True)
class PendingConfirmation:
    topic: str
    description: str


_CREATION_PATTERNS = [
    re.compile(r"(can you|could you|would you|please)?\s*(create|build|make)\s*(a|me)?\s*tool"),
    re.compile(r"(i need|i want)\s*(a|you to make)?\s*tool"),
    re.compile(r"(create|build|make)\s*(me)?\s*(a|an)?\s*\w+\s*tool"),
    re.compile(r"tool\s*(that|to|for|which)\s+(.+)"),
    re.compile(r"(can|could)\s+you\s+(help me )?(create|build|make)"),
]
_PURPOSE_RE = re.compile(r"tool\s+(that|to|for|which)\s+(.+)")
_TOPIC_RE = re.compile(r"(?:create|build|make)\s+(?:a|an|me)?\s*(\w+)\s*tool")
_OFFERS = ("i can create", "i could create", "i'll create", "i will create", "shall i create", "want me to create")


def detect_tool_creation_request(user_input: str, reply: str) -> Optional[PendingConfirmation]:
    """Did this exchange ask for (or offer) a new tool? Returns what to build if confirmed."""
    lower_in = (user_input or "").lower()
    lower_out = (reply or "").lower()
    if any(p.search(lower_in) for p in _CREATION_PATTERNS):
        m = _PURPOSE_RE.search(lower_in)
        description = m.group(2).strip() if m else user_input
        tm = _TOPIC_RE.search(lower_in)
        topic = tm.group(1).strip() if tm else ""
        if len(topic) <= 1 or topic in _NAME_STOPWORDS:
            topic = topic_from_description(description)
        return PendingConfirmation(topic=topic, description=description)
    if any(o in lower_out for o in _OFFERS) and ("tool" in lower_out or "tool" in lower_in):
        return PendingConfirmation(topic=topic_from_description(user_input), description=user_input)
    return None


