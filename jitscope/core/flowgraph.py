"""Split a JitDumpFg multi-graph dump into per-phase DOT graphs.

WHY: With DOTNET_JitDumpFgPhase=* the JIT appends one DOT graph per
compilation phase to a single file. Graphviz renders only the first
graph of a file, and users want to step through phases one at a time,
so each graph has to be isolated, named after its phase, and numbered.

HOW: The dump is split on the "digraph FlowGraph {" header. Each
fragment's phase name is read from its label attribute, e.g.

    graph [label = "Flowgraph for Program:Foo()\\nafter Pre-import"];

Two counters number the phases: a per-tier ordinal that restarts at
"Pre-import" (tier0 and tier1 dumps land in the same file) and an
absolute ordinal that never restarts.

RULES:
- Empty fragments (e.g. before the first header) are discarded
- The phase name is the text after the last " after " in the label
- "Pre-import" resets the per-tier ordinal to 1
- Characters illegal in file names are replaced by "_"
- A malformed fragment is logged and skipped; the split continues
- With an output_dir, each graph is written to "<absolute>. <name>.dot"
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from jitscope.config import FLOWGRAPH_SEPARATOR
from jitscope.core.ir import FlowGraphPhase, FormatDriftError

logger = logging.getLogger(__name__)

_LABEL_START = "graph [label = "
_LABEL_END = '"];'
_PHASE_SEPARATOR = " after "
_INITIAL_PHASE = "Pre-import"

# Union of the characters Windows and POSIX reject in file names.
_INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_phase_name(name: str) -> str:
    """Replace characters that cannot appear in a file name with "_"."""
    return _INVALID_FILENAME_CHARS_RE.sub("_", name)


def extract_phase_name(fragment: str) -> str:
    """Read the phase name from a graph fragment's label attribute.

    RULES:
    - Label is the text between 'graph [label = ' and the next '"];'
    - Literal "\\n" escapes in the label become spaces
    - Raises FormatDriftError when the label or the " after " part is missing
    """
    start = fragment.find(_LABEL_START)
    if start == -1:
        raise FormatDriftError("Graph has no label attribute")
    start += len(_LABEL_START)

    end = fragment.find(_LABEL_END, start)
    if end == -1:
        raise FormatDriftError("Graph label is not terminated")

    label = fragment[start:end].lstrip('"').replace("\\n", " ")

    after = label.rfind(_PHASE_SEPARATOR)
    if after == -1:
        raise FormatDriftError("Graph label {!r} names no phase".format(label))

    name = label[after + len(_PHASE_SEPARATOR):].strip()
    if not name:
        raise FormatDriftError("Graph label {!r} has an empty phase name".format(label))
    return name


def split_flowgraph(
    dump_text: str,
    output_dir: str | Path | None = None,
) -> list[FlowGraphPhase]:
    """Split a multi-graph dump into ordered FlowGraphPhase entries.

    WHY: This is the entry point the orchestrator calls after a JitDump
    run with flow graphs enabled.

    HOW: Splits on the graph header, extracts and sanitizes each phase
    name, assigns both ordinals, and optionally persists each graph.

    RULES:
    - Returns one phase per well-formed fragment, in dump order
    - absolute_ordinal increases by exactly 1 per returned phase
    - Never raises for malformed fragments; they are skipped

    Args:
        dump_text: Content of the JitDumpFgFile.
        output_dir: Directory to write "<identifier>.dot" files to, or
            None to keep the graphs in memory only.

    Returns:
        FlowGraphPhase list in dump order.
    """
    directory = Path(output_dir) if output_dir is not None else None
    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)

    phases: list[FlowGraphPhase] = []
    ordinal = 0
    absolute_ordinal = 0

    for fragment in dump_text.split(FLOWGRAPH_SEPARATOR):
        if not fragment.strip():
            continue

        try:
            name = extract_phase_name(fragment)
        except FormatDriftError as exc:
            logger.warning("Skipping flow graph fragment: %s", exc)
            continue

        # tier0 and tier1 dumps share one file; restart numbering per tier
        if name == _INITIAL_PHASE:
            ordinal = 0

        phase = FlowGraphPhase(
            ordinal=ordinal + 1,
            absolute_ordinal=absolute_ordinal + 1,
            name=sanitize_phase_name(name),
            graph_text=FLOWGRAPH_SEPARATOR + "\n" + fragment,
        )

        if directory is not None:
            dot_path = directory / "{}.dot".format(phase.identifier)
            try:
                dot_path.write_text(phase.graph_text, encoding="utf-8")
            except OSError:
                logger.warning("Failed to write flow graph %s", dot_path, exc_info=True)
                continue
            phase.file_path = str(dot_path)

        ordinal += 1
        absolute_ordinal += 1
        phases.append(phase)

    return phases
