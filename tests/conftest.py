from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pytest


def _find_repo_root(start: Path) -> Path:
    cur = start.resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / "cogshell").is_dir() and (candidate / "tests").is_dir():
            return candidate
    return cur


repo_root_str = str(_find_repo_root(Path(__file__).parent))
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)

from cogshell.agent import CogShell, ShellConfig  # noqa: E402
from cogshell.embeddings import HashEmbed  # noqa: E402
from cogshell.llm import TRANSCRIPT_STOPS, ChatModel  # noqa: E402
from cogshell.memory import MemoryStore  # noqa: E402
from cogshell.tokens import PipelineState, TokenRegistry  # noqa: E402


class FakeChatModel(ChatModel):
    """Records every prompt and answers with a fixed reply (or raises)."""

    def __init__(self, reply: str = "Sure, happy to help.", *, name: str = "fake", fail: bool = False):
        self.reply = reply
        self.name = name
        self.fail = fail
        self.prompts: List[str] = []

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("backend down")
        return self.reply


def local_tokens() -> TokenRegistry:
    """Offline tokens shaped like the network ones."""
    reg = TokenRegistry()

    @reg.token("ArxivSearch", "Search arXiv for papers on a topic")
    def arxiv(state: PipelineState, arg: Optional[str]) -> PipelineState:
        state.output = f"papers about {arg or state.query}"
        state.topic = arg or state.topic
        return state

    @reg.token("Summarize", "Summarize the current output")
    async def summarize(state: PipelineState, arg: Optional[str]) -> PipelineState:
        state.output = f"summary of: {state.output}"
        return state

    @reg.token("Explode", "Always fails")
    def explode(state: PipelineState, arg: Optional[str]) -> PipelineState:
        raise ValueError("boom")

    @reg.token("SetTopic", "Set the session topic")
    def set_topic(state: PipelineState, arg: Optional[str]) -> PipelineState:
        state.topic = arg or ""
        return state

    return reg


@pytest.fixture
def fake_llm() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def tokens() -> TokenRegistry:
    return local_tokens()


@pytest.fixture
def memory(tmp_path):
    store = MemoryStore(str(tmp_path / "mem.db"), embedder=HashEmbed())
    yield store
    store.close()


@pytest.fixture
def config(tmp_path) -> ShellConfig:
    root = tmp_path / "workspace"
    root.mkdir()
    return ShellConfig(
        db=str(tmp_path / "shell.db"),
        index_db=":memory:",
        index_roots=(str(root),),
        snapshot_dir=str(tmp_path / "snapshots"),
        session_id="test",
        backend="stub",
        background=False,
        log_file="",
    )


@pytest.fixture
def shell(config, fake_llm, tokens):
    sh = CogShell(config, llm=fake_llm, tokens=tokens, explorer=lambda topic: "", configure_logging=False)
    yield sh
    sh.close()
