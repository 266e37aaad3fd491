"""Core text transforms and intermediate representation.

WHY: The core package holds the pure, tool-independent parts of jitscope:
the IR dataclasses, the disassembly prettifier, the flow-graph splitter,
and symbol → target-string construction. None of them start processes.

HOW: ir.py defines the data structures, prettifier.py condenses raw
listings, flowgraph.py splits multi-graph dumps, symbols.py builds the
JIT method-selector strings.

RULES:
- Nothing in core spawns a process or touches the network
- Parsers degrade gracefully on format drift instead of raising
"""
