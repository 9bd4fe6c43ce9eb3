from __future__ import annotations

import asyncio
import inspect
import json
import re
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Sequence

from .errors import BackendError
from .logging_utils import log
from .util import short

# Stop sequences for the "### Role" transcript format the aggregator emits.
TRANSCRIPT_STOPS = ("### Human", "### System")


class ChatModel:
    """Text-in/text-out generation backend.

    Backends are synchronous; `agenerate` runs them on a worker thread so the turn
    can be cancelled at the await.
    """

    name: str = "chat_model"
    model: str = ""

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        raise NotImplementedError

    async def agenerate(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        return await asyncio.to_thread(
            self.generate_text, prompt, temperature=temperature, max_tokens=max_tokens, stop=stop
        )

    def describe(self) -> str:
        return f"{self.name}:{self.model}" if self.model else self.name


class StubChatModel(ChatModel):
    """Offline, deterministic backend: reflects the last human turn back."""

    name = "stub"

    _LAST_HUMAN = re.compile(r"### Human\s*\n(.*?)(?=\n### |\Z)", re.S)

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 256,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        turns = self._LAST_HUMAN.findall(prompt or "")
        if not turns:
            tail = (prompt or "").strip().splitlines()[-1:] or [""]
            return f"I'm here. ({short(tail[0], 80)})"
        last = turns[-1].strip()
        return f"You said: {short(last, 200)}. Tell me more about what you have in mind."


class OllamaChatModel(ChatModel):
    """
    Ollama backend over its local HTTP API (no extra deps).

    Uses `/api/generate` in raw mode because the prompt is already fully templated.
    """

    name = "ollama"

    def __init__(self, *, host: str = "http://localhost:11434", model: str = "", timeout_s: float = 120.0):
        self.host = (host or "").rstrip("/") or "http://localhost:11434"
        self.timeout_s = float(timeout_s)
        self.model = model.strip()
        if not self.model:
            self.model = self._pick_default_model()

    def _url(self, path: str) -> str:
        p = path if path.startswith("/") else ("/" + path)
        return self.host + p

    def _pick_default_model(self) -> str:
        try:
            with urllib.request.urlopen(self._url("/api/tags"), timeout=1.5) as r:  # noqa: S310
                raw = r.read().decode("utf-8", errors="replace")
        except (urllib.error.URLError, OSError) as e:
            raise BackendError(
                f"Ollama is not reachable at {self.host}. Start Ollama or pass --ollama-host."
            ) from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackendError(f"Failed to parse Ollama /api/tags response: {short(raw, 400)}") from e
        for m in data.get("models") or []:
            if isinstance(m, dict) and isinstance(m.get("name"), str) and m["name"].strip():
                return m["name"].strip()
        raise BackendError("Ollama is running, but no models are installed. Run `ollama pull <model>`.")

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "raw": True,
            "stream": False,
            "options": {
                "temperature": float(temperature),
                "num_predict": int(max_tokens),
                "stop": list(stop),
            },
        }
        req = urllib.request.Request(
            self._url("/api/generate"),
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as r:  # noqa: S310
                raw = r.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = ""
            raise BackendError(f"Ollama HTTP error: {e.code} {short(body, 400)}") from e
        except (urllib.error.URLError, OSError) as e:
            raise BackendError(f"Ollama request failed: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackendError(f"Ollama returned non-JSON: {short(raw, 400)}") from e
        return str((data or {}).get("response") or "").strip()


class LlamaCppChatModel(ChatModel):
    name = "llama_cpp"

    def __init__(
        self,
        model_path: str,
        *,
        n_ctx: int = 4096,
        n_threads: Optional[int] = None,
        n_gpu_layers: int = 0,
        verbose: bool = False,
    ):
        if not model_path:
            raise BackendError("llama_cpp backend needs --llama-model <path to .gguf>")
        try:
            from llama_cpp import Llama  # type: ignore
        except ImportError as e:
            raise ImportError("llama-cpp-python not installed. pip install 'cogshell[llama]'") from e
        # Older llama-cpp-python builds do not accept every keyword.
        init_sig = inspect.signature(getattr(Llama, "__init__"))
        kwargs: Dict[str, Any] = {
            "model_path": model_path,
            "n_ctx": int(n_ctx),
            "n_threads": n_threads,
            "n_gpu_layers": int(n_gpu_layers),
        }
        if "verbose" in init_sig.parameters:
            kwargs["verbose"] = bool(verbose)
        self._llm = Llama(**kwargs)
        self.model = model_path

    @staticmethod
    def _extract_text(resp: Any) -> str:
        if not isinstance(resp, dict):
            raise BackendError(f"llama_cpp completion returned {type(resp).__name__}, expected dict")
        choices: List[Any] = resp.get("choices") or []
        if not choices:
            raise BackendError(f"llama_cpp returned no choices: {list(resp.keys())}")
        c0 = choices[0] or {}
        if isinstance(c0, dict):
            return str(c0.get("text") or "").strip()
        return str(c0).strip()

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        stop: Sequence[str] = TRANSCRIPT_STOPS,
    ) -> str:
        out = self._llm(prompt, max_tokens=int(max_tokens), temperature=float(temperature), stop=list(stop))
        return self._extract_text(out)


def with_model(base: ChatModel, model: str) -> Optional[ChatModel]:
    """Derive a sibling backend that talks to a different model on the same server."""
    model = (model or "").strip()
    if not model:
        return None
    if isinstance(base, OllamaChatModel):
        return OllamaChatModel(host=base.host, model=model, timeout_s=base.timeout_s)
    log.warning(
        "alternate model ignored; backend has no model switching",
        extra={"extra": {"backend": base.name, "model": model}},
    )
    return None
