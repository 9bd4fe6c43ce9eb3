from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .agent import CogShell, ShellConfig
    from .cli import main

__all__ = ["CogShell", "ShellConfig", "main"]


def __getattr__(name: str):  # pragma: no cover
    # Lazy exports: importing the package must not pull in numpy/sqlite/backends.
    if name in {"CogShell", "ShellConfig"}:
        from .agent import CogShell, ShellConfig

        return {"CogShell": CogShell, "ShellConfig": ShellConfig}[name]
    if name == "main":
        from .cli import main

        return main
    raise AttributeError(name)
