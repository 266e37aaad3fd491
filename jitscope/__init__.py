"""jitscope: disassembly and flow-graph inspection for the .NET JIT/AOT toolchain.

WHY: Looking at the machine code the JIT (or crossgen2 / NativeAOT) produces
for one method means juggling `dotnet build`, a loader app, a dozen
DOTNET_* environment variables and then reading a listing full of comment
noise. This package drives the whole toolchain for a single symbol and
hands back a condensed, per-method text view.

HOW: Four-stage pipeline: validate configuration, build the project,
execute the selected compiler strategy, postprocess the output (prettify
the listing, split flow-graph dumps into per-phase graphs). Each stage is
independently testable.

RULES:
- Parsers (prettifier, flow-graph splitter) never raise to the caller
- The process runner never raises for ordinary tool failure
- Validation failures and tool failures are reported as plain text
- Only one run is in flight per Session
"""

__version__ = "0.1.0"
