"""
cogshell: interactive conversational agent shell.

Entry point wrapper. See the `cogshell/` package for the implementation.

Run:
    python cogshell.py chat --backend stub
    python cogshell.py selftest
"""

from __future__ import annotations

from cogshell.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
