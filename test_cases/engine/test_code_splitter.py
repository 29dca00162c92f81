import ast

import pytest

from src.kernel.engine.code_splitter import (
    ECHO_SINK_NAME,
    compile_statements,
    plan_execution,
    split_blocks,
)


def test_blocks_include_decorators() -> None:
    code = "import functools\n@functools.lru_cache\ndef f():\n    return 1\n"
    blocks = split_blocks(code)
    assert [(b.first_line, b.last_line) for b in blocks] == [(1, 1), (2, 4)]
    assert blocks[1].line_count == 3


def test_single_block_is_echoed() -> None:
    plan = plan_execution("for i in range(3):\n    i\n    i\n")
    assert plan.no_echo == []
    assert len(plan.echo) == 1


def test_short_last_block_is_echoed() -> None:
    plan = plan_execution("a = 1\nb = 2\na + b\n")
    assert len(plan.no_echo) == 2
    assert isinstance(plan.echo[0], ast.Expr)


def test_long_last_block_runs_everything_without_echo() -> None:
    code = "a = 1\nif a:\n    a\n    a\n    a\n    a + 1\n"
    plan = plan_execution(code)
    assert plan.echo == []
    assert len(plan.no_echo) == 2


def test_empty_code_plans_nothing() -> None:
    assert plan_execution("").empty
    assert plan_execution("# only a comment\n").empty


def test_syntax_error_propagates() -> None:
    with pytest.raises(SyntaxError):
        split_blocks("1 +")


def _run(code: str, *, echo: bool) -> list:
    seen = []
    ns = {ECHO_SINK_NAME: seen.append}
    stmts = [b.node for b in split_blocks(code)]
    exec(compile_statements(stmts, "<test>", echo=echo), ns)
    return seen


def test_echo_rewrites_top_level_and_loop_bodies() -> None:
    assert _run("1 + 1\nfor i in range(2):\n    i * 10\n", echo=True) == [2, 0, 10]


def test_echo_skips_function_and_class_bodies() -> None:
    code = "def f():\n    99\nclass C:\n    98\nf()\n(lambda: 97)()\n"
    assert _run(code, echo=True) == [None, 97]


def test_no_echo_mode_leaves_expressions_alone() -> None:
    assert _run("1 + 1\n", echo=False) == []


def test_compile_statements_returns_none_for_nothing() -> None:
    assert compile_statements([], "<test>", echo=True) is None
