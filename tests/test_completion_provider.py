"""Tests for copilot.completion_provider and copilot.documents."""

import os

import pytest

from conftest import FakeClock, FakeTransport

from copilot.completion_engine import CompletionEngine
from copilot.completion_provider import NO_SUGGESTION, CompletionProvider, InlineSuggestion, TriggerContext
from copilot.documents import Position, Range, TextDocument, WorkspaceFolders
from copilot.request_scheduler import CancellationSignal


def _provider(transport, config, workspace=None):
    clock = FakeClock()
    engine = CompletionEngine(transport, lambda: config, clock=clock, sleep=clock.sleep)
    return CompletionProvider(engine, workspace)


class TestTextDocument:
    """Tests for offset/position mapping."""

    def test_offsets_round_trip_across_lines(self):
        doc = TextDocument("ab\ncde\n\nf", "plaintext", "a.txt")
        assert doc.line_count == 4
        assert doc.offset_at(Position(1, 2)) == 5
        assert doc.position_at(5) == Position(1, 2)
        assert doc.offset_at(Position(3, 0)) == 8
        assert doc.line_at(Position(1, 0)) == "cde"

    def test_positions_are_clamped(self):
        doc = TextDocument("ab\ncd", "plaintext", "a.txt")
        assert doc.offset_at(Position(0, 99)) == 2
        assert doc.offset_at(Position(9, 9)) == 5
        assert doc.position_at(-3) == Position(0, 0)
        assert doc.position_at(100) == Position(1, 2)

    def test_carriage_return_stays_in_line(self):
        doc = TextDocument("a\r\nb", "plaintext", "a.txt")
        assert doc.line_at(Position(0, 0)) == "a\r"
        assert doc.offset_at(Position(1, 0)) == 3

    def test_uri_defaults_to_file_name(self):
        assert TextDocument("", "", "x.py").uri == "x.py"


class TestWorkspaceFolders:
    """Tests for mapping documents to workspace roots."""

    def test_deepest_containing_root_wins(self, tmp_path):
        outer = tmp_path / "repo"
        inner = outer / "packages" / "web"
        workspace = WorkspaceFolders([str(outer), str(inner)])
        assert workspace.get_workspace_root(str(inner / "src" / "a.ts")) == os.path.abspath(inner)
        assert workspace.get_workspace_root(str(outer / "b.ts")) == os.path.abspath(outer)

    def test_sibling_prefix_is_not_a_match(self, tmp_path):
        workspace = WorkspaceFolders([str(tmp_path / "app")])
        assert workspace.get_workspace_root(str(tmp_path / "app2" / "a.ts")) is None
        assert workspace.get_workspace_root("") is None

    def test_add_ignores_duplicates(self, tmp_path):
        workspace = WorkspaceFolders()
        workspace.add(str(tmp_path))
        workspace.add(str(tmp_path))
        assert workspace.get_workspace_root(str(tmp_path / "a.py")) == os.path.abspath(tmp_path)


class TestCompletionProvider:
    """Tests for the editor-facing adapter."""

    def test_trigger_uses_line_text_up_to_cursor(self, transport, config):
        provider = _provider(transport, config)
        doc = TextDocument("a = 1\nconst x = foo;", "typescript", "m.ts", uri="doc-1")
        trigger = provider.build_trigger(doc, Position(1, 10), TriggerContext(kind="invoke"))
        assert trigger.document_id == "doc-1"
        assert trigger.cursor_offset == 16
        assert trigger.line_text == "const x = "
        assert trigger.trigger_kind == "invoke"

    @pytest.mark.asyncio
    async def test_suggestion_is_anchored_at_cursor(self, tmp_path, transport, config):
        provider = _provider(transport, config)
        doc = TextDocument("let a = 1;\nconst x = ", "typescript", str(tmp_path / "m.ts"))

        suggestion = await provider.provide_completion(doc, Position(1, 10), None, CancellationSignal())

        assert isinstance(suggestion, InlineSuggestion)
        assert suggestion.text == "42;"
        assert suggestion.range == Range(Position(1, 10), Position(1, 10))
        assert suggestion.range.is_empty

    @pytest.mark.asyncio
    async def test_out_of_range_position_is_clamped(self, tmp_path, transport, config):
        provider = _provider(transport, config)
        doc = TextDocument("const x = ", "typescript", str(tmp_path / "m.ts"))
        suggestion = await provider.provide_completion(doc, Position(0, 50), None, CancellationSignal())
        assert suggestion.range.start == Position(0, 10)

    @pytest.mark.asyncio
    async def test_no_result_maps_to_no_suggestion(self, tmp_path, config):
        provider = _provider(FakeTransport(text="   "), config)
        doc = TextDocument("const x = ", "typescript", str(tmp_path / "m.ts"))
        suggestion = await provider.provide_completion(doc, Position(0, 10), TriggerContext(), CancellationSignal())
        assert suggestion is NO_SUGGESTION
        assert not suggestion

    @pytest.mark.asyncio
    async def test_workspace_root_reaches_context_assembly(self, tmp_path, transport, config):
        src = tmp_path / "src"
        src.mkdir()
        (src / "util.ts").write_text("export const double = (n: number) => n * 2;\n")
        main = src / "main.ts"
        text = "import { double } from './util';\nconst y = "
        provider = _provider(transport, config, WorkspaceFolders([str(tmp_path)]))
        doc = TextDocument(text, "typescript", str(main))

        await provider.provide_completion(doc, Position(1, 10), None, CancellationSignal())

        prompt = transport.calls[0]["prompt"]
        assert '<RELATED_FILE path="src/util.ts"' in prompt
        assert "export const double" in prompt
