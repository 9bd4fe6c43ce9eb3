"""Pipeline state and the registry of named pipeline operations ("tokens")."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Union


@dataclass
class PipelineState:
    query: str = ""
    prompt: str = ""
    output: str = ""
    topic: str = ""
    vector_store: Any = None
    # Free-form scratch space tokens may use to pass structured data along a chain.
    data: Dict[str, Any] = field(default_factory=dict)


StateResult = Union[PipelineState, Awaitable[PipelineState]]
Operation = Callable[[PipelineState, Optional[str]], StateResult]


@dataclass(frozen=True)
class TokenInfo:
    name: str
    description: str
    operation: Operation

    async def invoke(self, state: PipelineState, arg: Optional[str]) -> PipelineState:
        res = self.operation(state, arg)
        if inspect.isawaitable(res):
            res = await res
        if not isinstance(res, PipelineState):
            raise TypeError(f"token {self.name} returned {type(res).__name__}, expected PipelineState")
        return res


class TokenRegistry:
    """Name -> TokenInfo. Lookup is exact and case-sensitive; listing keeps registration order."""

    def __init__(self) -> None:
        self._tokens: Dict[str, TokenInfo] = {}

    def register(self, name: str, description: str, operation: Operation, *, replace_existing: bool = False) -> TokenInfo:
        if not name or not name.isidentifier():
            raise ValueError(f"token name must be an identifier: {name!r}")
        if name in self._tokens and not replace_existing:
            raise ValueError(f"Token already registered: {name}")
        info = TokenInfo(name=name, description=description, operation=operation)
        self._tokens[name] = info
        return info

    def token(self, name: str, description: str) -> Callable[[Operation], Operation]:
        """Decorator form of `register`."""

        def _wrap(fn: Operation) -> Operation:
            self.register(name, description, fn)
            return fn

        return _wrap

    def get(self, name: str) -> Optional[TokenInfo]:
        return self._tokens.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[TokenInfo]:
        return iter(list(self._tokens.values()))

    def names(self) -> List[str]:
        return list(self._tokens.keys())
