from __future__ import annotations

from cogshell.cli import _config_from_args, build_parser, main


def test_chat_defaults_follow_environment(monkeypatch):
    monkeypatch.setenv("COGSHELL_PERSONA", "Nova")
    monkeypatch.setenv("COGSHELL_BACKEND", "stub")
    monkeypatch.setenv("COGSHELL_MIND_TICK", "5")
    args = build_parser().parse_args(["chat", "--interest", "tides", "--interest", "coral", "--no-background"])
    cfg = _config_from_args(args)
    assert cfg.persona_name == "Nova"
    assert cfg.backend == "stub"
    assert cfg.mind_tick_s == 5.0
    assert cfg.mind_interests == ("tides", "coral")
    assert cfg.index_roots == (".",)
    assert cfg.background is False


def test_selftest_passes_offline(capsys):
    assert main(["selftest"]) == 0
    assert "Selftest OK" in capsys.readouterr().out
