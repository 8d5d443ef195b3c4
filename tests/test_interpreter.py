import logging

import pytest

from conftest import DictLoader
from extensions import ExtensionAPI, FunctionErrorKind, TableBuilder, build_default_functions
from interpreter import (
    TYPE_ARRAY,
    TYPE_BOOL,
    TYPE_DICT,
    TYPE_INT,
    TYPE_NULL,
    TYPE_STR,
    Context,
    ErrorFormatter,
    Interpreter,
    InterpretError,
    InterpretErrorKind,
    LoadError,
    Register,
    Value,
    wrap_int,
)
from parser import NASLSyntaxError, SyntaxErrorKind


def INT(n):
    return Value(TYPE_INT, n)


def STR(s):
    return Value(TYPE_STR, s)


def BOOL(b):
    return Value(TYPE_BOOL, b)


def error_kind(results):
    errors = [r.error for r in results if r.error is not None]
    assert len(errors) == 1, errors
    return errors[0].kind


class TestVariables:
    def test_undeclared_variable(self, run):
        results = run("a;")
        assert isinstance(results[0].error, InterpretError)
        assert results[0].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE

    def test_read_after_assign(self, last_value):
        assert last_value("a = 12; a;") == INT(12)

    def test_assign_returns_value(self, last_value):
        assert last_value('a = "x";') == STR("x")

    def test_compound_assign_needs_declaration(self, run):
        assert error_kind(run("z += 1;")) is InterpretErrorKind.UNDECLARED_VARIABLE
        assert error_kind(run("z++;")) is InterpretErrorKind.UNDECLARED_VARIABLE

    def test_prefix_and_postfix_increment(self, run):
        results = run("i = 5; j = i++; k = ++i; i; j; k;")
        assert [r.value for r in results[-3:]] == [INT(7), INT(5), INT(7)]

    def test_compound_operators(self, last_value):
        assert last_value("a = 10; a -= 3; a *= 2; a /= 4; a %= 2; a;") == INT(1)
        assert last_value("s = 'ab'; s += 'cd'; s;") == STR("abcd")
        assert last_value("b = 1; b <<= 4; b >>= 1; b;") == INT(8)


class TestOperators:
    def test_arithmetic(self, last_value):
        assert last_value("1 + 2 * 3;") == INT(7)
        assert last_value("(1 + 2) * 3;") == INT(9)
        assert last_value("2 ** 10;") == INT(1024)

    def test_truncating_division(self, last_value):
        assert last_value("-7 / 2;") == INT(-3)
        assert last_value("-7 % 2;") == INT(-1)
        assert last_value("7 % -2;") == INT(1)

    def test_division_by_zero(self, run):
        assert error_kind(run("1 / 0;")) is InterpretErrorKind.DIVISION_BY_ZERO
        assert error_kind(run("1 % 0;")) is InterpretErrorKind.DIVISION_BY_ZERO

    def test_64_bit_wrapping(self, last_value):
        assert last_value("9223372036854775807 + 1;") == INT(-9223372036854775808)
        assert wrap_int(1 << 64) == 0
        assert wrap_int(-1) == -1

    def test_shifts_and_bitwise(self, last_value):
        assert last_value("-16 >> 2;") == INT(-4)
        assert last_value("-1 >>> 60;") == INT(15)
        assert last_value("6 & 3;") == INT(2)
        assert last_value("6 | 3;") == INT(7)
        assert last_value("6 ^ 3;") == INT(5)
        assert last_value("~0;") == INT(-1)

    def test_string_concatenation_and_removal(self, last_value):
        assert last_value('"port " + 80;') == STR("port 80")
        assert last_value('"abcabc" - "b";') == STR("acabc")

    def test_integer_strings_coerce(self, last_value):
        assert last_value('"5" * 2;') == INT(10)

    def test_non_numeric_string_is_type_mismatch(self, run):
        assert error_kind(run('"x" * 2;')) is InterpretErrorKind.TYPE_MISMATCH

    def test_comparisons(self, last_value):
        assert last_value("1 < 2;") == BOOL(True)
        assert last_value('"b" > "a";') == BOOL(True)
        assert last_value('1 == "1";') == BOOL(True)
        assert last_value("NULL == 0;") == BOOL(True)
        assert last_value("[1, 2] == [1, 2];") == BOOL(True)
        assert last_value("TRUE != FALSE;") == BOOL(True)

    def test_regex_and_substring(self, last_value):
        assert last_value('"SSH-2.0-OpenSSH_8.9" =~ "OpenSSH_[0-9.]+";') == BOOL(True)
        assert last_value('"abc" !~ "^b";') == BOOL(True)
        assert last_value('"ssh" >< "openssh";') == BOOL(True)
        assert last_value('"ftp" >!< "openssh";') == BOOL(True)

    def test_logical_operators_short_circuit(self, run):
        results = run("FALSE && nope; TRUE || nope; 0 || 'x';")
        assert [r.value for r in results] == [BOOL(False), BOOL(True), BOOL(True)]

    def test_unary(self, last_value):
        assert last_value("!0;") == BOOL(True)
        assert last_value("-(3);") == INT(-3)

    def test_repeat_operator(self, last_value):
        assert last_value("i = 0; i++ x 4; i;") == INT(4)

    def test_quotable_strings_process_escapes(self, last_value):
        assert last_value("'a\\tb\\x41';") == STR("a\tbA")
        assert last_value('"a\\tb";') == STR("a\\tb")


class TestArrays:
    def test_assignment_grows_with_nulls(self, last_value):
        value = last_value("a[3] = 1; a;")
        assert value == Value(TYPE_ARRAY, [Value(TYPE_NULL, None)] * 3 + [INT(1)])

    def test_index_out_of_range(self, run):
        assert error_kind(run("a = [1, 2]; a[5];")) is InterpretErrorKind.INDEX_OUT_OF_RANGE

    def test_not_an_array(self, run):
        assert error_kind(run("b = 1; b[0];")) is InterpretErrorKind.NOT_AN_ARRAY

    def test_append_slot(self, last_value):
        assert last_value("a = [1]; a[] = 2; a;").to_python() == [1, 2]

    def test_value_semantics(self, last_value):
        assert last_value("a = [1, 2]; b = a; b[0] = 9; a[0];") == INT(1)

    def test_string_keys_make_a_dict(self, run):
        results = run('d["k"] = "v"; d["k"]; d["missing"]; d;')
        assert results[1].value == STR("v")
        assert results[2].value.type == TYPE_NULL
        assert results[3].value.type == TYPE_DICT

    def test_element_increment(self, last_value):
        assert last_value("a = [1, 2]; a[1]++; a[1] += 10; a;").to_python() == [1, 13]

    def test_to_python(self, last_value):
        assert last_value("[1, 'a', TRUE, NULL, [2]];").to_python() == [1, "a", True, None, [2]]


class TestControlFlow:
    def test_if_else(self, last_value):
        assert last_value("a = 0; if (a) b = 1; else b = 2; b;") == INT(2)
        assert last_value("if ('0') c = 1; else c = 3; c;") == INT(3)

    def test_for_with_break(self, last_value):
        assert last_value("s = 0; for (i = 0; i < 5; i++) { if (i == 3) break; s += i; } s;") == INT(3)

    def test_for_with_continue(self, last_value):
        assert last_value("s = 0; for (i = 0; i < 5; i++) { if (i % 2) continue; s += i; } s;") == INT(6)

    def test_while(self, last_value):
        assert last_value("i = 0; while (i < 3) i++; i;") == INT(3)

    def test_repeat_until(self, last_value):
        assert last_value("i = 10; repeat i++; until i > 3; i;") == INT(11)

    def test_foreach(self, last_value):
        assert last_value("s = 0; foreach v ([1, 2, 3]) s += v; s;") == INT(6)

    def test_foreach_over_dict_values(self, last_value):
        assert last_value("s = ''; d = make_array('a', 'x', 'b', 'y'); foreach v (d) s += v; s;") == STR("xy")

    @pytest.mark.parametrize("code", ["break;", "continue;", "return 1;"])
    def test_control_flow_outside_construct(self, run, code):
        assert error_kind(run(code)) is InterpretErrorKind.INVALID_CONTROL_FLOW

    def test_break_inside_function_outside_loop(self, run):
        results = run("function f() { break; } for (;;) f();")
        assert error_kind(results) is InterpretErrorKind.INVALID_CONTROL_FLOW

    def test_exit_stops_the_run(self, run):
        results = run("a = 1; exit(5); a = 2;")
        assert len(results) == 2
        assert results[-1].value == INT(5)
        assert results[-1].exited

    def test_exit_from_nested_statement(self, run):
        results = run("function f() { exit(3); } if (TRUE) f(); a = 1;")
        assert results[-1].exited
        assert results[-1].value == INT(3)


class TestFunctions:
    def test_named_arguments(self, last_value):
        assert last_value("function add(a, b) { return a + b; } add(a: 1, b: 2);") == INT(3)

    def test_missing_parameters_are_null(self, last_value):
        assert last_value("function f(a) { return isnull(a); } f();") == BOOL(True)

    def test_positional_arguments(self, last_value):
        assert last_value("function f() { return _FC_ANON_ARGS; } f(1, 'b');").to_python() == [1, "b"]

    def test_no_return_gives_null(self, last_value):
        assert last_value("function f() { a = 1; } f();").type == TYPE_NULL

    def test_callee_sees_globals_not_caller_locals(self, run):
        results = run(
            "g = 5;"
            "function inner() { return g; }"
            "function leak() { return secret; }"
            "function outer() { local_var secret; secret = 1; return leak(); }"
            "inner();"
            "outer();"
        )
        assert results[4].value == INT(5)
        assert results[5].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE

    def test_locals_stay_local(self, run):
        results = run("function f() { x = 1; } f(); x;")
        assert results[-1].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE

    def test_global_var_from_function(self, last_value):
        assert last_value("function f() { global_var g2 = 3; } f(); g2;") == INT(3)

    def test_assignment_updates_visible_global(self, last_value):
        assert last_value("count = 0; function bump() { count++; } bump(); bump(); count;") == INT(2)

    def test_recursion(self, last_value):
        code = "function fact(n) { if (n <= 1) return 1; return n * fact(n: n - 1); } fact(n: 10);"
        assert last_value(code) == INT(3628800)

    def test_unbounded_recursion(self, run):
        register = Register()
        results = run("function f(n) { return f(n: n + 1); } f(n: 0);", register=register)
        assert results[-1].error.kind is InterpretErrorKind.RECURSION_LIMIT
        assert register.depth == 1

    def test_scope_popped_after_error(self):
        register = Register()
        interpreter = Interpreter(register, Context())
        results = list(interpreter.execute("function f() { return nope; } f(); after = 1;"))
        assert results[1].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE
        assert results[2].ok
        assert register.depth == 1

    def test_unknown_function(self, run):
        assert error_kind(run("nope();")) is InterpretErrorKind.UNKNOWN_FUNCTION

    def test_user_function_shadows_native(self, last_value):
        assert last_value("function strlen() { return 99; } strlen('abc');") == INT(99)


class TestNativeFunctions:
    def _table(self, **functions):
        builder = TableBuilder()
        api = ExtensionAPI(builder=builder, ext_name="test")
        for name, impl in functions.items():
            api.register_function(name, impl)
        return builder.build("test")

    def test_function_error_is_wrapped(self, run):
        results = run("strlen();")
        error = results[0].error
        assert error.kind is InterpretErrorKind.FUNCTION_ERROR
        assert error.cause.kind is FunctionErrorKind.MISSING_ARGUMENT

    def test_tables_are_searched_in_order(self, last_value):
        first = self._table(answer=lambda register, context: INT(1))
        second = self._table(answer=lambda register, context: INT(2), other=lambda register, context: INT(3))
        context = Context(functions=(first, second))
        assert last_value("answer();", context) == INT(1)
        assert last_value("other();", context) == INT(3)

    def test_native_reads_named_and_positional_arguments(self, last_value):
        def echo(register, context):
            return Value(TYPE_ARRAY, [register.named("key") or Value(TYPE_NULL, None)] + register.positional())

        context = Context(functions=(self._table(echo=echo),))
        assert last_value("echo(1, 2, key: 'k');", context).to_python() == ["k", 1, 2]

    def test_native_does_not_see_caller_locals(self, run):
        def peek(register, context):
            return register.named("hidden") or Value(TYPE_NULL, None)

        context = Context(functions=(self._table(peek=peek),))
        results = run("function f() { local_var hidden = 1; return peek(); } f();", context)
        assert results[-1].value.type == TYPE_NULL

    def test_display_logs_through_context_logger(self, run, caplog):
        caplog.set_level(logging.INFO, logger="nasl.script")
        run("display('port ', 22, ' open');")
        assert "port 22 open" in caplog.messages

    def test_std_helpers(self, run):
        results = run(
            "strlen('abcd');"
            "typeof('x');"
            "typeof(NULL);"
            "max_index([1, 2, 3]);"
            "make_list(1, [2, 3]);"
            "keys(make_array('a', 1));"
            "string('a', 1);"
        )
        assert [r.value.to_python() for r in results] == [4, "string", "undef", 3, [1, 2, 3], ["a"], "a1"]


class TestInclude:
    def test_include_runs_in_current_scope(self, last_value):
        loader = DictLoader({"lib.inc": "function twice(v) { return v * 2; } shared = 7;"})
        context = Context(loader=loader)
        assert last_value('include("lib.inc"); twice(v: shared);', context) == INT(14)

    def test_missing_include_is_load_error(self, run):
        results = run('include("nothing.inc");')
        assert isinstance(results[0].error, LoadError)

    def test_include_with_syntax_error(self, run):
        context = Context(loader=DictLoader({"bad.inc": "a = ;"}))
        results = run('include("bad.inc"); b = 1;', context)
        assert isinstance(results[0].error, NASLSyntaxError)
        assert results[1].ok


class TestExecution:
    def test_syntax_error_in_function_body_discards_the_whole_declaration(self, run):
        results = run("function f() { a = ; leaked = 1; exit(7); } b = 2; leaked;")
        assert isinstance(results[0].error, NASLSyntaxError)
        assert results[1].value == INT(2)
        assert not any(r.exited for r in results)
        assert results[2].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE
        assert len(results) == 3

    def test_syntax_error_in_untaken_branch_runs_nothing(self, run):
        results = run("if (FALSE) { a = ; x = 1; } x;")
        assert len(results) == 2
        assert isinstance(results[0].error, NASLSyntaxError)
        assert results[1].error.kind is InterpretErrorKind.UNDECLARED_VARIABLE

    def test_long_operator_chain_is_rejected_when_parsed(self, run):
        results = run("a = " + " + ".join(["1"] * 3000) + "; b = 2;")
        assert results[0].error.kind is SyntaxErrorKind.TOO_DEEP
        assert results[1].value == INT(2)
        repr(results)

    def test_errors_do_not_stop_later_statements(self, run):
        results = run("a = 1; nope; b = 2; c = ; d = 4;")
        assert [r.ok for r in results] == [True, False, True, False, True]
        assert results[-1].value == INT(4)

    def test_error_formatter_shape(self):
        interpreter = Interpreter(Register(), Context(), filename="check.nasl")
        (result,) = list(interpreter.execute("\n  missing;"))
        formatter = ErrorFormatter(interpreter)
        data = formatter.to_dict(result.error)
        assert data["taxonomy"] == "interpret"
        assert data["kind"] == "undeclared_variable"
        assert data["position"]["line"] == 2
        assert data["position"]["column"] == 3
        text = formatter.format_text(result.error)
        assert "InterpretError" in text and "check.nasl" in text

    def test_error_formatter_syntax_json(self, run):
        (result,) = run("a = ;")
        assert '"taxonomy": "syntax"' in ErrorFormatter().to_json(result.error)

    def test_default_context_uses_bundled_functions(self):
        assert Context().functions == (build_default_functions(),)
