"""Condense a raw JitDisasm listing into a per-method view.

WHY: With DOTNET_JitDisasm the JIT prints every method wrapped in a
header and a footer of comment lines (frame layout, PerfScore, tier
info, ...). For day-to-day inspection only the code and its size matter.
This module strips the noise and keeps one compact section per method.

The expected input looks like:

    ; Assembly listing for method Program:MyMethod():int
    ; Emitting BLENDED_CODE for X64 with AVX - Windows
    ; optimized code

    G_M42249_IG01:
           0F1F440000       nop

    G_M42249_IG02:
           B82A000000       mov      eax, 42
           C3               ret

    ; Total bytes of code 76, prolog size 5, PerfScore 41.52, ...
    ; ============================================================

HOW: A single forward scan classifies every non-blank line as a comment
(";" prefix) or code and groups consecutive same-kind lines into Blocks.
A code label ("G_M42249_IG02:") always opens a new block. Blocks are then
grouped by method; comment blocks are dropped after the total code size
has been read from the method's last comment block.

RULES:
- minimal_comments=False → the input is returned unchanged
- Lines before the first method marker mean the format is unknown →
  raw input returned (in run mode those lines are the app's own console
  output and are skipped instead)
- No method marker at all → raw input returned, in every mode
- Methods appear in first-seen order, each as:
    "; Method <name>" + code blocks + "; Total bytes of code: <n>" + blank line
- Any parse failure → raw input returned and a warning logged; never raises
- Loader notes ("; jitscope: ...") are lifted out before parsing and
  appended after the condensed methods
"""

from __future__ import annotations

import logging
import re

from jitscope.config import LOADER_NOTE_PREFIX, METHOD_START_MARKER, TOTAL_BYTES_MARKER
from jitscope.core.ir import Block, BlockBuilder, BlockKind, FormatDriftError, MethodRecord

logger = logging.getLogger(__name__)

# A code label such as "G_M42249_IG01:" starts a new basic block.
_LABEL_RE = re.compile(r"^\w+:")


def parse_method_total_size(text: str) -> int:
    """Parse N out of "; Total bytes of code N, prolog size 5, ...".

    WHY: The size is the one piece of the trailer worth keeping; newer
    JITs append more comma-separated fields after it.

    HOW: Locate the marker, take the rest of that line up to the first
    comma (or the end of the line), and parse it as an integer.

    RULES:
    - Missing marker → FormatDriftError
    - Non-integer size → FormatDriftError
    """
    start = text.find(TOTAL_BYTES_MARKER)
    if start == -1:
        raise FormatDriftError("No '{}' trailer found".format(TOTAL_BYTES_MARKER.strip()))
    start += len(TOTAL_BYTES_MARKER)

    end = text.find("\n", start)
    line = text[start:] if end == -1 else text[start:end]
    size_part = line.split(",", 1)[0]

    try:
        return int(size_part)
    except ValueError as exc:
        raise FormatDriftError("Unparsable code size: {!r}".format(size_part)) from exc


def scan_blocks(raw: str, run_mode: bool = False) -> list[Block]:
    """Split a raw listing into comment and code Blocks.

    WHY: Grouping by kind is what lets the renderer drop all comments
    while keeping code blocks (and their blank-line separation) intact.

    HOW: Tracks the current method name and the kind of the previous
    line. A change of kind, a code label, or a new method marker opens a
    new BlockBuilder; everything else is appended to the open one.

    RULES:
    - Blank and whitespace-only lines are skipped entirely
    - The method marker line itself never becomes part of a block
    - A block never spans two methods
    - Raises FormatDriftError if no method marker is found, or (outside
      run mode) if any line precedes the first marker

    Args:
        raw: The listing exactly as the JIT printed it.
        run_mode: True when the listing is interleaved with app output.

    Returns:
        Frozen Blocks in source order.
    """
    builders: list[BlockBuilder] = []
    previous_kind: BlockKind | None = None
    current_method = ""

    for line in raw.splitlines():
        if not line.strip():
            continue

        if line.startswith(METHOD_START_MARKER):
            current_method = line[len(METHOD_START_MARKER):]
            previous_kind = None
            continue

        if not current_method:
            if run_mode:
                continue
            raise FormatDriftError("Listing does not start with a method marker")

        if line.startswith(";"):
            kind = BlockKind.COMMENT
        else:
            kind = BlockKind.CODE
            if _LABEL_RE.match(line):
                previous_kind = None

        if kind != previous_kind:
            builders.append(BlockBuilder(current_method, kind))
            previous_kind = kind
        builders[-1].append(line)

    if not current_method:
        raise FormatDriftError("No method marker found")

    return [builder.freeze() for builder in builders]


def parse_methods(raw: str, run_mode: bool = False) -> list[MethodRecord]:
    """Parse a raw listing into one MethodRecord per method.

    RULES:
    - Methods keep first-seen order; repeated listings of the same name merge
    - Every method needs a trailing comment block with the code size
    - Raises FormatDriftError on anything it cannot interpret
    """
    by_method: dict[str, list[Block]] = {}
    for block in scan_blocks(raw, run_mode=run_mode):
        by_method.setdefault(block.method_name, []).append(block)

    records: list[MethodRecord] = []
    for name, blocks in by_method.items():
        comments = [b for b in blocks if b.kind == BlockKind.COMMENT]
        if not comments:
            raise FormatDriftError("Method {} has no trailer comment".format(name))

        records.append(MethodRecord(
            name=name,
            code_blocks=tuple(b for b in blocks if b.kind == BlockKind.CODE),
            total_bytes=parse_method_total_size(comments[-1].text),
        ))

    return records


def render_methods(records: list[MethodRecord]) -> str:
    """Render MethodRecords as the condensed listing text."""
    sections: list[str] = []
    for record in records:
        body = "".join(block.text for block in record.code_blocks)
        sections.append("; Method {}{}; Total bytes of code: {}\n\n".format(
            record.name, body, record.total_bytes,
        ))
    return "".join(sections)


def split_loader_notes(raw: str) -> tuple[str, list[str]]:
    """Separate the loader app's notes from the JIT listing.

    WHY: The loader prints a note for every member it cannot compile, and
    those notes land wherever the JIT happens to be in its output, often
    before the first method marker.

    Returns:
        (listing without the notes, notes in order of appearance)
    """
    listing: list[str] = []
    notes: list[str] = []
    for line in raw.splitlines(keepends=True):
        if line.startswith(LOADER_NOTE_PREFIX):
            notes.append(line.rstrip("\r\n"))
        else:
            listing.append(line)
    return "".join(listing), notes


def prettify(raw: str, minimal_comments: bool, run_mode: bool = False) -> str:
    """Condense a raw JitDisasm listing, or return it unchanged.

    WHY: This is the public entry point used by the orchestrator. It must
    be total: a listing the parser does not understand is still useful
    to the user in raw form.

    HOW: Delegates to parse_methods/render_methods and falls back to the
    raw input on any error.

    RULES:
    - minimal_comments=False always wins: pass-through regardless of run_mode
    - Loader notes never count as lines before the first marker
    - Never raises; failures are logged and the raw input is returned

    Args:
        raw: The listing exactly as the JIT printed it.
        minimal_comments: Strip comments and condense when True.
        run_mode: The listing came from running the user's app, so
            console output may precede the first method marker.

    Returns:
        The condensed listing, or ``raw`` unchanged.
    """
    if not minimal_comments:
        return raw

    listing, notes = split_loader_notes(raw)
    try:
        condensed = render_methods(parse_methods(listing, run_mode=run_mode))
    except FormatDriftError as exc:
        logger.warning("Disassembly output format may have changed: %s", exc)
        return raw
    except Exception:
        logger.exception("Unexpected error while prettifying disassembly")
        return raw

    if notes:
        condensed += "\n".join(notes) + "\n"
    return condensed
