"""
Module: code_splitter.py
Location: src/kernel/engine/

Decides which parts of a cell run with interactive echo and which do not.

A cell is split into its top-level statements. A single statement runs with
echo. With several, everything but the last runs without echo, and the last
one is echoed only when it is short; a long trailing block (a function or
class definition, say) runs silently with the rest.
"""

import ast
from dataclasses import dataclass, field
from typing import List, Optional

ECHO_SINK_NAME = "__kernel_echo__"
MAX_ECHO_LINES = 2


@dataclass(frozen=True)
class Block:
    node: ast.stmt
    first_line: int
    last_line: int

    @property
    def line_count(self) -> int:
        return self.last_line - self.first_line + 1


@dataclass
class ExecutionPlan:
    no_echo: List[ast.stmt] = field(default_factory=list)
    echo: List[ast.stmt] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.no_echo and not self.echo


def split_blocks(code: str, filename: str = "<input>") -> List[Block]:
    """
    Split ``code`` into single-statement blocks.

    Raises SyntaxError when the code does not parse as a whole.
    """
    tree = ast.parse(code, filename=filename, mode="exec")
    blocks = []
    for node in tree.body:
        first = node.lineno
        for deco in getattr(node, "decorator_list", ()):
            first = min(first, deco.lineno)
        blocks.append(Block(node=node, first_line=first, last_line=node.end_lineno or node.lineno))
    return blocks


def plan_execution(code: str, filename: str = "<input>", max_echo_lines: int = MAX_ECHO_LINES) -> ExecutionPlan:
    blocks = split_blocks(code, filename)
    if not blocks:
        return ExecutionPlan()

    if len(blocks) == 1:
        return ExecutionPlan(echo=[blocks[0].node])

    last = blocks[-1]
    if last.line_count <= max_echo_lines:
        return ExecutionPlan(no_echo=[b.node for b in blocks[:-1]], echo=[last.node])

    return ExecutionPlan(no_echo=[b.node for b in blocks])


class EchoTransformer(ast.NodeTransformer):
    """
    Route the value of every expression statement to the echo sink.

    Function and class bodies are left alone: they run later, outside the
    cell, so their expressions are never echoed.
    """

    def visit_FunctionDef(self, node):
        return node

    def visit_AsyncFunctionDef(self, node):
        return node

    def visit_ClassDef(self, node):
        return node

    def visit_Lambda(self, node):
        return node

    def visit_Expr(self, node: ast.Expr):
        call = ast.Call(
            func=ast.Name(id=ECHO_SINK_NAME, ctx=ast.Load()),
            args=[node.value],
            keywords=[],
        )
        return ast.copy_location(ast.Expr(value=ast.copy_location(call, node.value)), node)


def compile_statements(stmts: List[ast.stmt], filename: str, *, echo: bool) -> Optional[object]:
    if not stmts:
        return None
    module = ast.Module(body=list(stmts), type_ignores=[])
    if echo:
        module = EchoTransformer().visit(module)
    ast.fix_missing_locations(module)
    return compile(module, filename, "exec")
