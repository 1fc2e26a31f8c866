"""Tests for copilot.prompt_builder."""

import pytest

from copilot.config_manager import CompletionConfig
from copilot.entities import CompletionContext, FileContext
from copilot.prompt_builder import (
    CompletionStrategy,
    PromptBuilder,
    describe_indent,
    detect_indent,
    detect_strategy,
    visible_indent,
)


def _ctx(prefix, suffix="", language="typescript", related=()):
    return CompletionContext(prefix=prefix, suffix=suffix, language=language, filename="main.ts", related_files=tuple(related))


class TestDetectStrategy:
    """Tests for the mutually exclusive cursor heuristics."""

    @pytest.mark.parametrize(
        "line, expected",
        [
            ("const x = ", CompletionStrategy.ASSIGNMENT),
            ("total += ", CompletionStrategy.ASSIGNMENT),
            ("value := ", CompletionStrategy.ASSIGNMENT),
            ("obj.", CompletionStrategy.MEMBER_ACCESS),
            ("user?.", CompletionStrategy.MEMBER_ACCESS),
            ("std::", CompletionStrategy.MEMBER_ACCESS),
            ("const f = (a) => ", CompletionStrategy.ARROW_FUNCTION),
            ("key=lambda item: ", CompletionStrategy.ARROW_FUNCTION),
            ("console.log('hello ", CompletionStrategy.IN_STRING),
            ('msg = "say \\"hi', CompletionStrategy.IN_STRING),
            ("foo(a, ", CompletionStrategy.FUNCTION_ARGS),
            ("    ", CompletionStrategy.NEW_STATEMENT),
            ("", CompletionStrategy.NEW_STATEMENT),
            ("return a", CompletionStrategy.CONTINUE),
        ],
    )
    def test_strategy(self, line, expected):
        assert detect_strategy(line) == expected

    def test_comparison_is_not_assignment(self):
        assert detect_strategy("if a == ") == CompletionStrategy.CONTINUE
        assert detect_strategy("if (a <= ") == CompletionStrategy.FUNCTION_ARGS

    def test_closed_string_and_call_do_not_count(self):
        assert detect_strategy('print("a")') == CompletionStrategy.CONTINUE

    def test_member_access_wins_inside_call(self):
        assert detect_strategy("foo(obj.") == CompletionStrategy.MEMBER_ACCESS


class TestIndentation:
    """Tests for indentation detection and rendering."""

    def test_tabs_and_spaces_are_distinguished(self):
        assert detect_indent("\t\tx") == "\t\t"
        assert detect_indent("    x") == "    "
        assert visible_indent("\t  ") == "→··"
        assert describe_indent("\t") == "1 tab"
        assert describe_indent("    ") == "4 spaces"
        assert describe_indent("") == "no indentation"


class TestPromptBuilder:
    """Tests for the FIM prompt structure."""

    def test_assignment_scenario_selects_value_expression_hint(self):
        built = PromptBuilder().build(_ctx("const x = ", ";\n"), CompletionConfig())
        assert built.strategy == CompletionStrategy.ASSIGNMENT.value
        assert "ASSIGNMENT: Provide the value expression" in built.system_prompt
        assert "MEMBER ACCESS" not in built.system_prompt

    def test_member_access_scenario(self):
        built = PromptBuilder().build(_ctx("const y = obj.", ""), CompletionConfig())
        assert built.strategy == CompletionStrategy.MEMBER_ACCESS.value
        assert "MEMBER ACCESS" in built.system_prompt
        assert "no trailing code" in built.system_prompt

    def test_prompt_has_boundary_markers_in_order(self):
        built = PromptBuilder().build(_ctx("a = 1\nb = ", "\nc = 3"), CompletionConfig())
        prompt = built.prompt
        assert prompt.index("<PRE>") < prompt.index("</PRE><MID></MID><SUF>") < prompt.index("</SUF>")
        assert '<FILE path="main.ts" language="typescript">' in prompt
        assert "<PRE>\na = 1\nb = </PRE><MID></MID><SUF>\nc = 3\n</SUF>" in prompt

    def test_line_based_truncation(self):
        prefix = "\n".join(f"p{i}" for i in range(100))
        suffix = "\n".join(f"s{i}" for i in range(50))
        built = PromptBuilder().build(_ctx(prefix, suffix), CompletionConfig(max_prefix_lines=80, max_suffix_lines=20))
        assert "p19\n" not in built.prompt
        assert "<PRE>\np20\n" in built.prompt
        assert "s19\n</SUF>" in built.prompt
        assert "s20" not in built.prompt

    def test_related_files_block_is_bounded(self):
        related = [FileContext(path=f"src/f{i}.ts", content="z" * 5000, language="typescript") for i in range(3)]
        built = PromptBuilder().build(_ctx("x.", related=related), CompletionConfig())
        assert built.prompt.startswith("<RELATED_FILES>\n")
        assert 'path="src/f0.ts"' in built.prompt
        assert 'path="src/f1.ts"' in built.prompt
        assert 'path="src/f2.ts"' not in built.prompt
        assert "z" * 1000 in built.prompt
        assert "z" * 1001 not in built.prompt

    def test_no_related_block_without_related_files(self):
        built = PromptBuilder().build(_ctx("x."), CompletionConfig())
        assert built.prompt.startswith("<FILE ")
        assert "<RELATED_FILES>" not in built.prompt

    def test_code_braces_survive_templating(self):
        built = PromptBuilder().build(_ctx("const o = {prefix}; f({a: 1}, ", "{suffix}"), CompletionConfig())
        assert "const o = {prefix}; f({a: 1}, </PRE>" in built.prompt
        assert "<SUF>{suffix}\n</SUF>" in built.prompt

    def test_system_prompt_rules(self):
        built = PromptBuilder().build(_ctx("\tif (ok) ", language="javascript"), CompletionConfig())
        system = built.system_prompt
        assert "inline code completion engine for javascript" in system
        assert "no code fences" in system
        assert "Do NOT repeat" in system
        assert '"→"' in system and "1 tab" in system
        assert "NEVER emit placeholder comments" in system
        assert "NEVER emit more than one alternative" in system
