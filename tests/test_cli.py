"""Tests for the jitscope command-line interface.

WHY: The CLI is the user-facing entry point outside an editor. Argument
parsing, type-name handling and exit codes must be right, and the
listing must go to stdout while status goes to stderr.

HOW: main() is called with explicit argv and SystemExit is caught. The
orchestrator is patched for disasm so no dotnet is spawned.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from jitscope.cli import (
    EXIT_CANCELLED,
    EXIT_FAILED,
    EXIT_OK,
    build_parser,
    main,
    parse_env_overrides,
    parse_type_name,
)
from jitscope.core.symbols import SymbolKind
from jitscope.toolchain.orchestrator import RunResult, RunStatus


def _main(argv) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestParseTypeName:

    def test_namespaced(self):
        assert parse_type_name("MyApp.Program") == ("MyApp", ("Program",))

    def test_nested_generic(self):
        assert parse_type_name("NS.Sub.Outer+Inner`1") == ("NS.Sub", ("Outer", "Inner`1"))

    def test_global_namespace(self):
        assert parse_type_name("Program") == ("", ("Program",))

    @pytest.mark.parametrize("name", ["", "   ", "NS.", "NS.Outer+", "+Inner"])
    def test_malformed(self, name):
        with pytest.raises(ValueError):
            parse_type_name(name)


class TestParseEnvOverrides:

    def test_pairs(self):
        assert parse_env_overrides(["A=1", "B=x=y"]) == {"A": "1", "B": "x=y"}

    def test_none(self):
        assert parse_env_overrides(None) == {}

    def test_missing_separator(self):
        with pytest.raises(ValueError):
            parse_env_overrides(["NOVALUE"])


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:

    def test_disasm_defaults(self):
        args = build_parser().parse_args(["disasm", "--project", "a.csproj", "--type", "MyApp.Program"])
        assert args.command == "disasm"
        assert args.member is None
        assert args.compiler == "jit"
        assert args.env is None

    def test_env_is_repeatable(self):
        args = build_parser().parse_args([
            "disasm", "--project", "a.csproj", "--type", "T", "--env", "A=1", "--env", "B=2",
        ])
        assert args.env == ["A=1", "B=2"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_rejects_unknown_arch(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["disasm", "--project", "a", "--type", "T", "--arch", "mips"])


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


class TestPrettifyCommand:

    def test_prints_condensed_listing(self, tmp_path, capsys, sample_listing, sample_prettified):
        listing = tmp_path / "listing.asm"
        listing.write_text(sample_listing, encoding="utf-8")

        assert _main(["prettify", str(listing)]) == EXIT_OK
        assert capsys.readouterr().out == sample_prettified

    def test_missing_file(self, tmp_path, capsys):
        assert _main(["prettify", str(tmp_path / "missing.asm")]) == EXIT_FAILED
        assert "Error" in capsys.readouterr().err


class TestFlowgraphCommand:

    def test_splits_into_out_dir(self, tmp_path, capsys, sample_flowgraph_dump):
        dump = tmp_path / "fg.dot"
        dump.write_text(sample_flowgraph_dump, encoding="utf-8")
        out = tmp_path / "phases"

        assert _main(["flowgraph", str(dump), "--out", str(out)]) == EXIT_OK

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 5
        assert lines[0].startswith("1. Pre-import\t")
        assert len(list(out.glob("*.dot"))) == 5

    def test_no_graphs(self, tmp_path, capsys):
        dump = tmp_path / "fg.dot"
        dump.write_text("nothing here", encoding="utf-8")

        assert _main(["flowgraph", str(dump), "--out", str(tmp_path / "phases")]) == EXIT_FAILED
        assert "no flow graphs" in capsys.readouterr().err


class TestDisasmCommand:

    def _patched(self, result):
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(return_value=result)
        return patch("jitscope.cli.ToolchainOrchestrator", return_value=orchestrator), orchestrator

    def test_prints_listing(self, project_dir, capsys):
        patcher, orchestrator = self._patched(RunResult(status=RunStatus.COMPLETED, output="; Method A:B()"))
        with patcher:
            code = _main([
                "disasm", "--project", str(project_dir / "MyApp.csproj"),
                "--type", "MyApp.Program", "--member", "Foo", "--env", "DOTNET_JitStdOutFile=x",
            ])

        assert code == EXIT_OK
        captured = capsys.readouterr()
        assert "; Method A:B()" in captured.out
        assert "Finished in" in captured.err

        symbol, project, config = orchestrator.run.await_args.args[:3]
        assert symbol.kind == SymbolKind.METHOD
        assert symbol.namespace == "MyApp"
        assert symbol.type_path == ("Program",)
        assert project.project_name == "MyApp"
        assert config.env_overrides == {"DOTNET_JitStdOutFile": "x"}

    def test_type_without_member_disassembles_whole_type(self, project_dir):
        patcher, orchestrator = self._patched(RunResult(status=RunStatus.COMPLETED, output=""))
        with patcher:
            _main(["disasm", "--project", str(project_dir / "MyApp.csproj"), "--type", "MyApp.Box`1"])

        symbol = orchestrator.run.await_args.args[0]
        assert symbol.kind == SymbolKind.TYPE
        assert symbol.is_generic_type

    @pytest.mark.parametrize("status,expected", [
        (RunStatus.FAILED, EXIT_FAILED),
        (RunStatus.CANCELLED, EXIT_CANCELLED),
    ])
    def test_exit_codes(self, project_dir, status, expected):
        patcher, _ = self._patched(RunResult(status=status, output="nope"))
        with patcher:
            code = _main(["disasm", "--project", str(project_dir / "MyApp.csproj"), "--type", "MyApp.Program"])
        assert code == expected

    def test_missing_project(self, tmp_path, capsys):
        code = _main(["disasm", "--project", str(tmp_path / "None.csproj"), "--type", "MyApp.Program"])
        assert code == EXIT_FAILED
        assert "Project file not found" in capsys.readouterr().err

    def test_bad_env_override(self, project_dir, capsys):
        code = _main([
            "disasm", "--project", str(project_dir / "MyApp.csproj"), "--type", "T", "--env", "NOVALUE",
        ])
        assert code == EXIT_FAILED
        assert "KEY=VALUE" in capsys.readouterr().err
