"""Command-line interface for jitscope.

WHY: Outside an editor integration, users need a way to ask "what code
does the JIT generate for this method?" from a terminal, and to run the
listing/flow-graph transforms on files they already have.

HOW: argparse with three subcommands:
  disasm    : build the project and print the listing for a symbol
  prettify  : condense an existing raw JitDisasm listing
  flowgraph : split an existing JitDumpFg dump into per-phase .dot files
The disasm command runs the async orchestrator via asyncio.run().
Status messages go to stderr; the listing goes to stdout.

RULES:
- Exit codes: 0 completed, 1 failed, 130 cancelled (Ctrl+C)
- --type takes a metadata name: nested types use "+", generic types keep
  their arity suffix (e.g. MyApp.Outer+Inner`1)
- --verbose switches logging from WARNING to INFO
- Status output goes to stderr (not stdout) so the listing can be piped
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from jitscope import __version__
from jitscope.config import DEFAULT_ARCH, DEFAULT_GRAPHVIZ_DOT, SUPPORTED_ARCHES
from jitscope.core.flowgraph import split_flowgraph
from jitscope.core.prettifier import prettify
from jitscope.core.symbols import CodeSymbolDescriptor, SymbolKind
from jitscope.toolchain.models import Compiler, Configuration
from jitscope.toolchain.orchestrator import RunStatus, ToolchainOrchestrator
from jitscope.toolchain.project import load_project
from jitscope.toolchain.render import PhaseRenderer
from jitscope.toolchain.session import Session

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def _status(msg: str) -> None:
    """Print a status message to stderr.

    RULES:
    - All status messages go to stderr
    - Always flush after writing
    """
    print(msg, file=sys.stderr, flush=True)


def parse_type_name(type_name: str) -> tuple[str, tuple[str, ...]]:
    """Split "NS.Outer+Inner`1" into ("NS", ("Outer", "Inner`1"))."""
    type_name = type_name.strip()
    if not type_name:
        raise ValueError("Type name is empty")

    outer, *nested = type_name.split("+")
    namespace, _, outermost = outer.rpartition(".")
    path = tuple(part for part in [outermost, *nested])
    if any(not part for part in path):
        raise ValueError("Malformed type name: {}".format(type_name))
    return namespace, path


def parse_env_overrides(pairs: Optional[List[str]]) -> dict[str, str]:
    """Turn ["KEY=VALUE", ...] into a dict; the first "=" separates."""
    overrides: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError("Expected KEY=VALUE, got '{}'".format(pair))
        overrides[key] = value
    return overrides


def _symbol_from_args(args: argparse.Namespace) -> CodeSymbolDescriptor:
    namespace, type_path = parse_type_name(args.type)
    kind = SymbolKind(args.kind) if args.kind else (SymbolKind.METHOD if args.member else SymbolKind.TYPE)
    return CodeSymbolDescriptor(
        kind=kind,
        type_path=type_path,
        namespace=namespace,
        name=args.member or "",
        is_generic_type="`" in type_path[-1],
        is_generic_method=args.generic_method,
    )


def _config_from_args(args: argparse.Namespace) -> Configuration:
    values = dict(
        show_asm_comments=args.show_comments,
        jit_dump=args.jit_dump,
        print_inlinees=args.print_inlinees,
        run_app_mode=args.run,
        overridden_jit_disasm=args.jit_disasm,
        compiler=Compiler(args.compiler),
        use_custom_runtime=args.runtime is not None,
        arch=args.arch,
        use_pgo=args.pgo,
        diffable=args.diffable,
        use_tiered_jit=args.tiered,
        use_unloadable_context=args.unloadable,
        use_publish_for_reload=args.publish,
        use_no_restore=args.no_restore,
        flowgraph_enable=args.flowgraph,
        graphviz_dot_path=args.dot,
        overridden_target_framework=args.tfm,
        dont_guess_target_framework=args.no_guess_tfm,
        env_overrides=parse_env_overrides(args.env),
    )
    if args.runtime is not None:
        values["path_to_local_runtime"] = args.runtime
    if args.custom_jit is not None:
        values["custom_jit"] = args.custom_jit
    if args.crossgen2_args is not None:
        values["crossgen2_args"] = args.crossgen2_args
    if args.ilc_args is not None:
        values["ilc_args"] = args.ilc_args
    return Configuration(**values)


async def _run_disasm(args: argparse.Namespace) -> int:
    """Build, execute and print the listing for one symbol.

    RULES:
    - Listing (or failure text) to stdout, progress to stderr
    - With --flowgraph, phase files are listed on stderr; --render also
      renders them to .png
    """
    try:
        symbol = _symbol_from_args(args)
        config = _config_from_args(args)
        project = load_project(args.project)
    except (ValueError, ValidationError, FileNotFoundError) as exc:
        print("Error: {}".format(exc), file=sys.stderr)
        return EXIT_FAILED

    session = Session(ToolchainOrchestrator(on_status=_status))
    result = await session.run(symbol, project, config)

    print(result.output)
    _status("Finished in {:.1f}s ({})".format(result.elapsed_s, result.status.value))

    if result.status == RunStatus.CANCELLED:
        return EXIT_CANCELLED
    if result.status == RunStatus.FAILED:
        return EXIT_FAILED

    if result.phases:
        if args.render:
            await PhaseRenderer(config.graphviz_dot_path).render_all(result.phases)
        for phase in result.phases:
            _status("  {} -> {}".format(phase.identifier, phase.image_path or phase.file_path))
    return EXIT_OK


def _run_prettify(args: argparse.Namespace) -> int:
    try:
        raw = sys.stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
    except OSError as exc:
        print("Error: {}".format(exc), file=sys.stderr)
        return EXIT_FAILED

    print(prettify(raw, minimal_comments=True, run_mode=args.run_mode), end="")
    return EXIT_OK


async def _run_flowgraph(args: argparse.Namespace) -> int:
    try:
        dump_text = Path(args.file).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        print("Error: {}".format(exc), file=sys.stderr)
        return EXIT_FAILED

    phases = split_flowgraph(dump_text, args.out)
    if not phases:
        print("Error: no flow graphs found in {}".format(args.file), file=sys.stderr)
        return EXIT_FAILED

    if args.render:
        _status("Rendering {} phase(s)...".format(len(phases)))
        await PhaseRenderer(args.dot).render_all(phases)

    for phase in phases:
        print("{}\t{}".format(phase.identifier, phase.image_path or phase.file_path))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable; tests can inspect the parser without running anything.
    """
    parser = argparse.ArgumentParser(
        prog="jitscope",
        description="Inspect the machine code the .NET JIT/AOT compilers generate for a method.",
    )
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress at INFO level.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # -- disasm --------------------------------------------------------------
    disasm = subparsers.add_parser("disasm", help="Build a project and print the listing for a symbol.")
    disasm.add_argument("--project", required=True, help="Path to the .csproj file.")
    disasm.add_argument("--type", required=True, help="Type metadata name, e.g. MyApp.Outer+Inner`1.")
    disasm.add_argument("--member", default=None, help="Member name (omit to disassemble the whole type).")
    disasm.add_argument(
        "--kind",
        choices=[kind.value for kind in SymbolKind],
        default=None,
        help="Symbol kind (default: method when --member is given, else type).",
    )
    disasm.add_argument("--generic-method", action="store_true", help="The member is a generic method.")

    disasm.add_argument("--show-comments", action="store_true", help="Keep the JIT's comment lines.")
    disasm.add_argument("--jit-dump", action="store_true", help="Use JitDump (requires a checked JIT).")
    disasm.add_argument("--print-inlinees", action="store_true", help="Print the inlining tree.")
    disasm.add_argument("--run", action="store_true", help="Run the app instead of the loader helper.")
    disasm.add_argument("--jit-disasm", default=None, help="JitDisasm value to use with --run.")
    disasm.add_argument(
        "--compiler",
        choices=[compiler.value for compiler in Compiler],
        default=Compiler.JIT.value,
        help="Code generator (default: %(default)s).",
    )
    disasm.add_argument("--runtime", default=None, help="Path to a locally built dotnet/runtime repo.")
    disasm.add_argument("--custom-jit", default=None, help="JIT binary name to load as AltJit.")
    disasm.add_argument(
        "--arch",
        choices=sorted(SUPPORTED_ARCHES),
        default=DEFAULT_ARCH,
        help="Target architecture (default: %(default)s).",
    )
    disasm.add_argument("--pgo", action="store_true", help="Enable tiered PGO.")
    disasm.add_argument("--diffable", action="store_true", help="Emit diff-friendly listings.")
    disasm.add_argument("--tiered", action="store_true", help="Enable tiered compilation.")
    disasm.add_argument("--unloadable", action="store_true", help="Load the assembly into a collectible context.")
    disasm.add_argument("--publish", action="store_true", help="Use 'dotnet publish --self-contained'.")
    disasm.add_argument("--no-restore", action="store_true", help="Skip restore and project references.")
    disasm.add_argument("--crossgen2-args", default=None, help="Extra crossgen2 arguments.")
    disasm.add_argument("--ilc-args", default=None, help="Extra ilc arguments (%%DOTNET_REPO%% expands).")
    disasm.add_argument("--flowgraph", action="store_true", help="Capture per-phase flow graphs.")
    disasm.add_argument("--render", action="store_true", help="Render captured flow graphs to .png.")
    disasm.add_argument("--dot", default=DEFAULT_GRAPHVIZ_DOT, help="Path to Graphviz 'dot'.")
    disasm.add_argument("--tfm", default=None, help="Pin the target framework, e.g. net8.0.")
    disasm.add_argument("--no-guess-tfm", action="store_true", help="Do not pass -f <tfm> to dotnet.")
    disasm.add_argument(
        "--env",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Extra environment variable for the execute step. Can be specified multiple times.",
    )

    # -- prettify ------------------------------------------------------------
    pretty = subparsers.add_parser("prettify", help="Condense a raw JitDisasm listing.")
    pretty.add_argument("file", help="Listing file, or '-' for stdin.")
    pretty.add_argument("--run-mode", action="store_true", help="Skip app output before the first listing.")

    # -- flowgraph -----------------------------------------------------------
    flow = subparsers.add_parser("flowgraph", help="Split a JitDumpFg dump into per-phase .dot files.")
    flow.add_argument("file", help="Flow-graph dump file (JitDumpFgFile + .dot).")
    flow.add_argument("--out", required=True, help="Directory for the per-phase .dot files.")
    flow.add_argument("--render", action="store_true", help="Also render each phase to .png.")
    flow.add_argument("--dot", default=DEFAULT_GRAPHVIZ_DOT or "dot", help="Path to Graphviz 'dot'.")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    - Always exits via sys.exit with the run's exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "disasm":
            code = asyncio.run(_run_disasm(args))
        elif args.command == "prettify":
            code = _run_prettify(args)
        else:
            code = asyncio.run(_run_flowgraph(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        code = EXIT_CANCELLED

    sys.exit(code)


if __name__ == "__main__":
    main()
