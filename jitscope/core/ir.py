"""Intermediate representation for parsed disassembly and flow-graph dumps.

WHY: The JIT prints a flat, line-oriented listing and a flat concatenation
of DOT graphs. The prettifier and the flow-graph splitter both need a
typed intermediate form between "raw text" and "rendered text" so each
transformation step can be tested on its own.

HOW: Five types form the IR:
  BlockKind: comment or code
  Block: a run of consecutive same-kind lines inside one method
  BlockBuilder: the mutable accumulation phase of a Block
  MethodRecord: one method's code blocks plus its total code size
  FlowGraphPhase: one compilation phase's isolated DOT graph

RULES:
- Blocks are immutable; only a BlockBuilder is appended to
- A BlockBuilder is frozen exactly once; freezing moves its lines out
- Block order always equals source line order
- A MethodRecord never holds blocks from another method
- FlowGraphPhase.ordinal restarts at 1 on "Pre-import"; absolute_ordinal never restarts
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class FormatDriftError(ValueError):
    """Raised when a listing or dump no longer matches the expected format.

    WHY: The JIT's textual output is not a stable API. When a parser meets
    input it cannot interpret, callers degrade gracefully (raw passthrough,
    skipped fragment) instead of crashing.

    RULES:
    - Raised by parsers, caught at the parser's public boundary
    - Never surfaces to the orchestrator's caller
    """


class BlockKind(str, enum.Enum):
    """Classification of a listing line."""

    COMMENT = "comment"
    CODE = "code"


@dataclass(frozen=True)
class Block:
    """A maximal run of consecutive lines of one kind within one method.

    RULES:
    - method_name: the method the block belongs to
    - kind: COMMENT or CODE
    - text: the lines, each followed by a newline, with a leading newline
      so consecutive blocks render separated by a line break
    """

    method_name: str
    kind: BlockKind
    text: str


class BlockBuilder:
    """Exclusively-owned accumulator that becomes an immutable Block.

    WHY: The prettifier appends lines to the block it is currently
    building, then reads every block exactly once while rendering. Keeping
    the mutable buffer alive after the read invites accidental late writes.

    HOW: Lines collect in a private list. freeze() joins them into a Block
    and drops the list, so the builder cannot be written to again.

    RULES:
    - append() after freeze() raises RuntimeError
    - freeze() may be called once; the second call raises RuntimeError
    """

    def __init__(self, method_name: str, kind: BlockKind) -> None:
        self.method_name = method_name
        self.kind = kind
        self._lines: list[str] | None = []

    def append(self, line: str) -> None:
        if self._lines is None:
            raise RuntimeError("Block for {} was already frozen".format(self.method_name))
        self._lines.append(line)

    def freeze(self) -> Block:
        lines, self._lines = self._lines, None
        if lines is None:
            raise RuntimeError("Block for {} was already frozen".format(self.method_name))
        return Block(
            method_name=self.method_name,
            kind=self.kind,
            text="\n" + "".join(line + "\n" for line in lines),
        )


@dataclass(frozen=True)
class MethodRecord:
    """One method's condensed listing.

    RULES:
    - name: suffix of the "; Assembly listing for method " line
    - code_blocks: CODE blocks only, in source order
    - total_bytes: parsed from the trailing "; Total bytes of code N, ..." comment
    """

    name: str
    code_blocks: tuple[Block, ...]
    total_bytes: int


@dataclass
class FlowGraphPhase:
    """One compilation phase's control-flow graph isolated from a dump.

    WHY: The JIT writes one DOT graph per phase into a single file. Viewers
    need each phase as its own graph, numbered per tier and overall.

    RULES:
    - ordinal: 1-based position within the current tier (resets at Pre-import)
    - absolute_ordinal: 1-based position within the whole dump, never resets
    - name: phase name with file-name-illegal characters replaced by "_"
    - graph_text: a complete, standalone DOT graph
    - file_path: where the graph was written, or None if not persisted
    """

    ordinal: int
    absolute_ordinal: int
    name: str
    graph_text: str
    file_path: str | None = None
    image_path: str | None = field(default=None, compare=False)

    @property
    def identifier(self) -> str:
        return "{}. {}".format(self.absolute_ordinal, self.name)
