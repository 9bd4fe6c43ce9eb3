"""Contracts for the advisory subsystems consulted while composing a reply.

The aggregator only ever talks to these protocols. Default implementations
live in `cognition.py` and `causal.py`; anything with the same async methods
can be swapped in.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from .memory import Episode


# ---- ethics ----


class ActionDescriptor(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    potential_effects: List[str] = Field(default_factory=list)


class ActionContext(BaseModel):
    agent_id: str
    environment: str
    state: Dict[str, Any] = Field(default_factory=dict)


class EthicsVerdict(BaseModel):
    permitted: bool
    level: str = "permitted"  # permitted | caution | denied
    reasoning: str = ""
    requires_human_approval: bool = False


@runtime_checkable
class EthicsFramework(Protocol):
    async def evaluate(self, action: ActionDescriptor, context: ActionContext) -> EthicsVerdict: ...


# ---- context shift ----


class ShiftState(BaseModel):
    topic: str = ""
    compression: float = 0.0
    resources: float = 100.0
    steps: int = 0
    trajectory: List[str] = Field(default_factory=list)


@runtime_checkable
class ContextShiftEngine(Protocol):
    async def advance(self, state: ShiftState, topics: Sequence[str]) -> ShiftState: ...


# ---- symbolic reasoning ----


class ReasoningMode(str, Enum):
    SYMBOLIC_FIRST = "symbolic_first"
    NEURAL_FIRST = "neural_first"
    PARALLEL = "parallel"


class SymbolicResult(BaseModel):
    answer: str = ""
    confidence: float = 0.0


@runtime_checkable
class SymbolicReasoner(Protocol):
    async def hybrid_reason(self, text: str, mode: ReasoningMode) -> SymbolicResult: ...


# ---- causal reasoning ----


class CausalVariable(BaseModel):
    name: str
    kind: str = "continuous"


class CausalEdge(BaseModel):
    cause: str
    effect: str
    strength: float = 0.8
    kind: str = "direct"


class CausalGraph(BaseModel):
    variables: List[CausalVariable] = Field(default_factory=list)
    edges: List[CausalEdge] = Field(default_factory=list)


class Explanation(BaseModel):
    narrative: str = ""


@runtime_checkable
class CausalReasoner(Protocol):
    async def explain(self, effect: str, causes: Sequence[str], graph: CausalGraph) -> Explanation: ...


# ---- integration ("Phi") ----


class Pathway(BaseModel):
    name: str
    synapses: int
    activations: int
    weight: float = 1.0


class IntegrationResult(BaseModel):
    score: float


@runtime_checkable
class IntegrationScorer(Protocol):
    async def compute(self, pathways: Sequence[Pathway]) -> IntegrationResult: ...


# ---- episodic memory ----


@runtime_checkable
class EpisodicMemory(Protocol):
    async def retrieve_similar(self, text: str, top_k: int, min_similarity: float) -> List[Episode]: ...

    async def store_episode(
        self, branch: str, context: str, outcome: str, metadata: Dict[str, Any]
    ) -> Optional[str]: ...


# ---- metacognition ----


class TraceStepKind(str, Enum):
    OBSERVATION = "Observation"
    VALIDATION = "Validation"
    INFERENCE = "Inference"
    CONCLUSION = "Conclusion"


class TraceStep(BaseModel):
    kind: TraceStepKind
    content: str
    rationale: str = ""


class Reflection(BaseModel):
    quality_score: float
    improvements: List[str] = Field(default_factory=list)


@runtime_checkable
class Metacognition(Protocol):
    def start_trace(self) -> None: ...

    def add_step(self, kind: TraceStepKind, content: str, rationale: str = "") -> None: ...

    def end_trace(self, conclusion: str, success: bool) -> None: ...

    def reflect(self) -> Reflection: ...
