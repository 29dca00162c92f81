from src.kernel.engine.input_transformer import (
    AUTOCALL_FULL,
    AUTOCALL_OFF,
    AUTOCALL_SMART,
    DIRECTIVE_CALL_NAME,
    InputTransformer,
)


def _ns() -> dict:
    return {"f": lambda *a: a, "x": 5, "Point": type("Point", (), {})}


def test_explicit_call_always_applies() -> None:
    result = InputTransformer(autocall=AUTOCALL_OFF).transform_cell("/f 1, 2", _ns())
    assert result.code == "f(1, 2)"
    assert result.reported_code == "f(1, 2)"
    assert result.autocall_applied


def test_implicit_call_needs_autocall_and_callable() -> None:
    ns = _ns()
    assert InputTransformer(autocall=AUTOCALL_SMART).transform_cell("f 1, 2", ns).code == "f(1, 2)"
    assert InputTransformer(autocall=AUTOCALL_OFF).transform_cell("f 1, 2", ns).code == "f 1, 2"
    assert InputTransformer(autocall=AUTOCALL_SMART).transform_cell("x 1", ns).code == "x 1"
    assert InputTransformer(autocall=AUTOCALL_SMART).transform_cell("g 1", ns).code == "g 1"


def test_valid_python_is_never_rewritten() -> None:
    result = InputTransformer(autocall=AUTOCALL_FULL).transform_cell("f (1)\nx = f\n", _ns())
    assert result.code == "f (1)\nx = f\n"
    assert not result.autocall_applied


def test_bare_name_only_called_at_full_level() -> None:
    ns = _ns()
    assert InputTransformer(autocall=AUTOCALL_SMART).transform_cell("f", ns).code == "f"
    assert InputTransformer(autocall=AUTOCALL_FULL).transform_cell("f", ns).code == "f()"
    assert InputTransformer(autocall=AUTOCALL_FULL).transform_cell("Point", ns).code == "Point"


def test_keywords_are_left_alone() -> None:
    assert InputTransformer(autocall=AUTOCALL_FULL).transform_cell("return x", _ns()).code == "return x"


def test_directive_expanded_but_not_reported() -> None:
    result = InputTransformer().transform_cell("%page x\n/f 1\n", _ns())
    assert result.code == f"{DIRECTIVE_CALL_NAME}('page', 'x')\nf(1)\n"
    assert result.reported_code == "%page x\nf(1)\n"
    assert result.autocall_applied


def test_directive_alone_does_not_count_as_autocall() -> None:
    result = InputTransformer().transform_cell("%who", _ns())
    assert result.code == f"{DIRECTIVE_CALL_NAME}('who', '')"
    assert not result.autocall_applied


def test_indentation_is_kept() -> None:
    code = "for i in range(2):\n    /f i\n"
    assert InputTransformer().transform_cell(code, _ns()).code == "for i in range(2):\n    f(i)\n"


def test_string_literal_lines_are_never_rewritten() -> None:
    code = 'fmt = """\n%s: %d\n/f 1\n"""\nfmt'
    result = InputTransformer(autocall=AUTOCALL_FULL).transform_cell(code, _ns())
    assert result.code == code
    assert not result.autocall_applied


def test_bracket_continuation_lines_are_never_rewritten() -> None:
    code = "a, b = 6, 3\nx = (a\n/b)\ny = [f\n f 1]"
    result = InputTransformer(autocall=AUTOCALL_FULL).transform_cell(code, _ns())
    assert result.code == code


def test_backslash_continuation_is_left_alone() -> None:
    code = "x = 1 + \\\n%who\n%who"
    result = InputTransformer().transform_cell(code, _ns())
    assert result.code == f"x = 1 + \\\n%who\n{DIRECTIVE_CALL_NAME}('who', '')"


def test_rewrites_resume_after_a_multi_line_statement() -> None:
    code = "s = '''\n%page\n'''\n%page s\n"
    result = InputTransformer().transform_cell(code, _ns())
    assert result.code == f"s = '''\n%page\n'''\n{DIRECTIVE_CALL_NAME}('page', 's')\n"
