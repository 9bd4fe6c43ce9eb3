from __future__ import annotations

import argparse
import asyncio
import os
import sys
import tempfile
import threading
import time
import traceback
from typing import List, Optional

from .agent import CogShell, ShellConfig
from .tools import ToolCall


def _env(name: str, default: str) -> str:
    return os.environ.get(f"COGSHELL_{name}", default)


class _Style:
    def __init__(self, enabled: bool):
        self.enabled = bool(enabled)

    def _wrap(self, code: str, s: str) -> str:
        if not self.enabled:
            return s
        return f"\033[{code}m{s}\033[0m"

    def dim(self, s: str) -> str:
        return self._wrap("2", s)

    def bold(self, s: str) -> str:
        return self._wrap("1", s)

    def red(self, s: str) -> str:
        return self._wrap("31", s)

    def green(self, s: str) -> str:
        return self._wrap("32", s)

    def yellow(self, s: str) -> str:
        return self._wrap("33", s)

    def magenta(self, s: str) -> str:
        return self._wrap("35", s)

    def cyan(self, s: str) -> str:
        return self._wrap("36", s)


class _Spinner:
    def __init__(self, *, enabled: bool, text: str = "thinking"):
        self.enabled = bool(enabled)
        self.text = text
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._th: threading.Thread | None = None

    def start(self) -> None:
        if not self.enabled:
            return
        if self._th and self._th.is_alive():
            return
        self._stop.clear()
        self._th = threading.Thread(target=self._run, name="cogshell-spinner", daemon=True)
        self._th.start()

    def stop(self) -> None:
        if not self.enabled:
            return
        self._stop.set()
        th = self._th
        if th:
            th.join(timeout=0.5)
        with self._lock:
            sys.stdout.write("\r\033[K")
            sys.stdout.flush()

    def _run(self) -> None:
        frames = ["|", "/", "-", "\\"]
        i = 0
        while not self._stop.is_set():
            with self._lock:
                sys.stdout.write(f"\r{frames[i % len(frames)]} {self.text}...\033[K")
                sys.stdout.flush()
            i += 1
            time.sleep(0.08)


HELP_LINES = (
    "Commands:",
    "  PIPELINE:  tokens | pipeline help | ArxivSearch 'topic' | Summarize | emergence <topic>",
    "  TOOLS:     list tools | add tool <name> | smart tool for <goal> | tool <name> <json> | tool stats",
    "  SKILLS:    list skills | learn about <topic> | run <skill>",
    "  MEMORY:    remember <topic> | memory stats | save yourself | snapshot",
    "  MIND:      start mind | stop mind | mind state | think about <topic> | interests",
    "  INDEX:     reindex | reindex incremental | index search <query> | index stats",
    "  SESSION:   /poll | /help | /quit (or just say goodbye)",
)


def _config_from_args(args: argparse.Namespace) -> ShellConfig:
    return ShellConfig(
        persona_name=args.persona,
        db=args.db,
        session_id=args.session_id,
        embedder=args.embedder,
        st_model=args.st_model,
        backend=args.backend,
        ollama_host=args.ollama_host,
        ollama_model=args.ollama_model,
        orchestrated_model=args.orchestrated_model,
        base_model=args.base_model,
        llama_model=args.llama_model,
        llama_ctx=args.llama_ctx,
        llama_threads=args.llama_threads,
        llama_gpu_layers=args.llama_gpu_layers,
        index_db=args.index_db,
        index_roots=tuple(args.index_root or ["."]),
        snapshot_dir=args.snapshot_dir,
        background=not args.no_background,
        mind_tick_s=args.mind_tick,
        mind_interests=tuple(args.interest or []),
        snapshot_every_s=args.snapshot_every,
        initiative_threshold=args.initiative_threshold,
        culture=args.culture,
        json_logs=args.json_logs,
        log_level=args.log_level,
        log_file=args.log_file,
    )


def cmd_chat(args: argparse.Namespace) -> int:
    try:
        shell = CogShell(_config_from_args(args))
    except (RuntimeError, ImportError) as e:
        print(f"cogshell: {e}", file=sys.stderr)
        return 2

    try:
        is_tty = sys.stdout.isatty()
        style = _Style(enabled=is_tty and (not args.no_color))
        spinner = _Spinner(enabled=is_tty and (not args.no_spinner))
        name = shell.persona.name

        print(style.dim("-" * 72))
        print(style.bold(name) + " " + style.dim(f"(backend={shell.llm.describe()}, tokens={len(shell.tokens)})"))
        print(style.dim("Type /help for commands. Ctrl-C cancels a turn; Ctrl-D or 'goodbye' exits."))
        print(style.dim("-" * 72) + "\n")
        if shell.llm.name == "stub":
            print(
                style.yellow("NOTE: ")
                + "running with the stub backend (deterministic echo). "
                "Use `--backend auto|llama_cpp|ollama` for real replies.\n"
            )

        while not shell.exiting:
            try:
                user = input(style.green("you> ") if style.enabled else "you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break

            if not user:
                continue
            if user in ("/q", "/quit", "/exit"):
                break
            if user == "/help":
                print("\n".join(HELP_LINES))
                continue
            if user == "/poll":
                msgs = shell.poll_proactive(limit=5)
                if not msgs:
                    print("(no proactive messages)")
                for m in msgs:
                    print(style.magenta(f"[{name} wonders] ") + m["message"])
                continue

            try:
                spinner.start()
                reply = asyncio.run(shell.ahandle(user))
            except KeyboardInterrupt:
                spinner.stop()
                print(style.dim("(turn cancelled)"))
                continue
            except Exception as e:  # pylint: disable=broad-exception-caught
                spinner.stop()
                print(style.cyan(f"{name}> ") + style.red(f"ERROR: {e}"))
                traceback.print_exc()
                continue
            finally:
                spinner.stop()

            print(style.cyan(f"{name}> ") + reply.text)
            if reply.reflection:
                print(style.dim(reply.reflection))
            for m in shell.poll_proactive(limit=2):
                print("\n" + style.magenta(f"[{name} wonders] ") + m["message"] + "\n")
    finally:
        shell.close()
    return 0


def cmd_selftest(args: argparse.Namespace) -> int:
    """
    Offline sanity checks with the stub backend:
    - SQLite episodes and skills
    - calculator tool
    - pipeline token dispatch
    - router, conversation path and ethics gate
    """
    tmp_dir = tempfile.mkdtemp(prefix="cogshell_selftest_")
    cfg = ShellConfig(
        db=args.db or os.path.join(tmp_dir, "selftest.db"),
        index_db=":memory:",
        index_roots=(tmp_dir,),
        snapshot_dir=tmp_dir,
        session_id="selftest",
        backend="stub",
        background=False,
        log_level="WARNING",
        log_file="",
    )
    shell = CogShell(cfg)
    try:
        out = shell.tools.execute(ToolCall(name="calculator", arguments={"expression": "2+2"}))
        assert out.ok, out.error
        assert float(out.output.get("result", -1)) == 4.0

        r = shell.handle("SetTopic 'physics'")
        assert r.kind == "command" and "SetTopic" in r.text, r.text
        assert shell.interpreter.state.topic == "physics"

        r = shell.handle("learn about rivers")
        assert "research skill" in r.text, r.text
        assert "Research_rivers" in shell.handle("list skills").text

        r = shell.handle("hello there, how are you today?")
        assert r.kind == "conversation" and r.text, r
        assert shell.memory.episode_count() >= 1, "episode not stored"

        r = shell.handle("tell me how to build a bomb")
        assert r.text.startswith("I'm unable to respond"), r.text

        print("Selftest OK")
        return 0
    except AssertionError as e:
        print("Selftest FAILED")
        print(str(e))
        return 1
    finally:
        shell.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cogshell", description="Interactive conversational agent shell.")
    sub = p.add_subparsers(dest="cmd", required=True)

    chat = sub.add_parser("chat", help="Interactive chat loop.")
    chat.add_argument("--persona", default=_env("PERSONA", "Iris"))
    chat.add_argument("--db", default=_env("DB", "cogshell.db"))
    chat.add_argument("--session-id", default=_env("SESSION_ID", "default"))

    chat.add_argument("--embedder", choices=["hash", "st"], default=_env("EMBEDDER", "hash"))
    chat.add_argument("--st-model", default=_env("ST_MODEL", "all-MiniLM-L6-v2"))

    chat.add_argument("--backend", choices=["auto", "llama_cpp", "ollama", "stub"], default=_env("BACKEND", "auto"))
    chat.add_argument("--ollama-host", default=_env("OLLAMA_HOST", "http://localhost:11434"))
    chat.add_argument("--ollama-model", default=_env("OLLAMA_MODEL", ""))
    chat.add_argument(
        "--orchestrated-model",
        default=_env("ORCHESTRATED_MODEL", ""),
        help="Model used when the conversation is well integrated (Ollama only).",
    )
    chat.add_argument(
        "--base-model",
        default=_env("BASE_MODEL", ""),
        help="Model used when the conversation is one-sided (Ollama only).",
    )
    chat.add_argument("--llama-model", default=_env("LLAMA_MODEL", ""), help="Path to a local .gguf file.")
    chat.add_argument("--llama-ctx", type=int, default=int(_env("LLAMA_CTX", "4096")))
    chat.add_argument("--llama-threads", type=int, default=None)
    chat.add_argument("--llama-gpu-layers", type=int, default=int(_env("LLAMA_GPU_LAYERS", "0")))

    chat.add_argument("--index-db", default=_env("INDEX_DB", "cogshell_index.db"))
    chat.add_argument("--index-root", action="append", default=None, help="Directory to index (repeatable).")
    chat.add_argument("--snapshot-dir", default=_env("SNAPSHOT_DIR", "~/.cogshell"))
    chat.add_argument("--snapshot-every", type=float, default=float(_env("SNAPSHOT_EVERY", "600")))

    chat.add_argument("--mind-tick", type=float, default=float(_env("MIND_TICK", "30")))
    chat.add_argument("--interest", action="append", default=None, help="Seed interest for the mind (repeatable).")
    chat.add_argument("--initiative-threshold", type=float, default=float(_env("INITIATIVE_THRESHOLD", "0.55")))
    chat.add_argument("--culture", default=_env("CULTURE", ""), help="Force the reply language, e.g. de-DE.")
    chat.add_argument("--no-background", action="store_true")

    chat.add_argument("--log-level", default=_env("LOG_LEVEL", "WARNING"))
    chat.add_argument("--log-file", default=_env("LOG_FILE", "cogshell.log"))
    chat.add_argument("--json-logs", action="store_true")
    chat.add_argument("--no-color", action="store_true", help="Disable ANSI colors.")
    chat.add_argument("--no-spinner", action="store_true", help="Disable the in-progress spinner.")
    chat.set_defaults(func=cmd_chat)

    selftest = sub.add_parser("selftest", help="Run quick offline sanity checks.")
    selftest.add_argument("--db", default="")
    selftest.set_defaults(func=cmd_selftest)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)
