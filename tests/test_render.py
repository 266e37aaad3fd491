"""Tests for bounded Graphviz rendering.

WHY: Rendering is the one place jitscope runs many processes at once.
The pool size must hold, renders of the same file must be shared, and a
broken 'dot' must not take the whole flow-graph view down.

HOW: A fake runner "renders" by writing the -o file after a short sleep
and tracks how many renders overlap.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from jitscope.core.flowgraph import split_flowgraph
from jitscope.runner import ProcessResult
from jitscope.toolchain.render import PhaseRenderer


class FakeDot:
    """Writes the requested .png and records peak concurrency."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self.active = 0
        self.peak = 0

    async def run(self, invocation, on_output=None):
        self.calls.append(invocation)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.active -= 1
        if self.fail:
            return ProcessResult(stderr="Error: syntax error in line 1")
        image = invocation.args[1][len("-o"):]
        Path(image).write_bytes(b"\x89PNG")
        return ProcessResult()


def _phases(tmp_path, dump):
    return split_flowgraph(dump, tmp_path / "graphs")


class TestPhaseRenderer:

    def test_renders_every_phase_with_bounded_parallelism(self, tmp_path, sample_flowgraph_dump):
        phases = _phases(tmp_path, sample_flowgraph_dump)
        dot = FakeDot()

        async def go():
            renderer = PhaseRenderer("dot", runner=dot, limit=2)
            return await renderer.render_all(phases)

        images = asyncio.run(go())

        assert len(images) == len(phases)
        assert all(image and Path(image).is_file() for image in images)
        assert [p.image_path for p in phases] == images
        assert dot.peak <= 2

    def test_command_line(self, tmp_path, sample_flowgraph_dump):
        phase = _phases(tmp_path, sample_flowgraph_dump)[0]
        dot = FakeDot()

        asyncio.run(PhaseRenderer("/usr/bin/dot", runner=dot, limit=1).render(phase))

        invocation = dot.calls[0]
        assert invocation.executable == "/usr/bin/dot"
        assert invocation.args == ("-Tpng", "-o" + phase.file_path + ".png", "-Kdot", phase.file_path)

    def test_existing_image_is_reused(self, tmp_path, sample_flowgraph_dump):
        phase = _phases(tmp_path, sample_flowgraph_dump)[0]
        Path(phase.file_path + ".png").write_bytes(b"old")
        dot = FakeDot()

        image = asyncio.run(PhaseRenderer("dot", runner=dot, limit=1).render(phase))

        assert image == phase.file_path + ".png"
        assert dot.calls == []

    def test_concurrent_requests_share_one_render(self, tmp_path, sample_flowgraph_dump):
        phase = _phases(tmp_path, sample_flowgraph_dump)[0]
        dot = FakeDot()

        async def go():
            renderer = PhaseRenderer("dot", runner=dot, limit=2)
            return await asyncio.gather(renderer.render(phase), renderer.render(phase))

        first, second = asyncio.run(go())

        assert first == second
        assert len(dot.calls) == 1

    def test_failure_returns_none(self, tmp_path, sample_flowgraph_dump):
        phase = _phases(tmp_path, sample_flowgraph_dump)[0]

        image = asyncio.run(PhaseRenderer("dot", runner=FakeDot(fail=True), limit=1).render(phase))

        assert image is None
        assert phase.image_path is None

    def test_unpersisted_phase_rejected(self, sample_flowgraph_dump):
        phase = split_flowgraph(sample_flowgraph_dump)[0]
        with pytest.raises(ValueError):
            asyncio.run(PhaseRenderer("dot", runner=FakeDot(), limit=1).render(phase))

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            PhaseRenderer("dot", runner=FakeDot(), limit=0)
