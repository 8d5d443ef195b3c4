import pytest

from lexer import Category, Keyword, NASLLexError, Tokenizer
from parser import (
    Array,
    ArrayLiteral,
    Assign,
    AssignOrder,
    Block,
    Break,
    Call,
    Declare,
    Exit,
    For,
    ForEach,
    FunctionDeclaration,
    If,
    Include,
    MAX_DEPTH,
    NamedParameter,
    NASLSyntaxError,
    NoOp,
    Operator,
    Parser,
    Primitive,
    Repeat,
    Return,
    Role,
    SyntaxErrorKind,
    Variable,
    While,
    classify,
    parse,
)


def single(code):
    statements = list(parse(code))
    assert len(statements) == 1, statements
    return statements[0]


def tokens(code):
    return list(Tokenizer(code))


@pytest.mark.parametrize("code", ["1;", "0x2A;", "017;", "0b11;", '"text";', "'quoted';", "10.0.0.1;"])
def test_literal_is_primitive_carrying_token(code):
    assert single(code) == Primitive(tokens(code)[0])


@pytest.mark.parametrize("code", ["TRUE;", "FALSE;", "NULL;"])
def test_literal_keywords_are_primitives(code):
    assert single(code) == Primitive(tokens(code)[0])


@pytest.mark.parametrize(
    "op, category",
    [("+", Category.PLUS), ("-", Category.MINUS), ("~", Category.TILDE), ("!", Category.BANG)],
)
def test_unary_operators(op, category):
    code = f"{op}1;"
    assert single(code) == Operator(category, [Primitive(tokens(code)[1])])


@pytest.mark.parametrize("op, category", [("++", Category.PLUS_PLUS), ("--", Category.MINUS_MINUS)])
def test_prefix_increment_on_variable(op, category):
    code = f"{op}a;"
    assert single(code) == Assign(category, AssignOrder.ASSIGN_RETURN, Variable(tokens(code)[1]), NoOp())


@pytest.mark.parametrize("op, category", [("++", Category.PLUS_PLUS), ("--", Category.MINUS_MINUS)])
def test_prefix_increment_on_array_element(op, category):
    code = f"{op}a[0];"
    toks = tokens(code)
    expected = Assign(category, AssignOrder.ASSIGN_RETURN, Array(toks[1], Primitive(toks[3])), NoOp())
    assert single(code) == expected


@pytest.mark.parametrize("code", ["++1;", "--\"a\";", "++(a);"])
def test_prefix_increment_requires_target(code):
    with pytest.raises(NASLSyntaxError) as excinfo:
        list(parse(code))
    assert excinfo.value.kind is SyntaxErrorKind.UNEXPECTED_TOKEN


def test_increment_binds_tighter_than_binary_operators():
    code = "1 + ++a * 1;"
    toks = tokens(code)
    one, a, last = toks[0], toks[3], toks[5]
    increment = Assign(Category.PLUS_PLUS, AssignOrder.ASSIGN_RETURN, Variable(a), NoOp())
    expected = Operator(Category.PLUS, [Primitive(one), Operator(Category.STAR, [increment, Primitive(last)])])
    assert single(code) == expected


def test_postfix_increment_returns_before_assigning():
    code = "a++;"
    assert single(code) == Assign(Category.PLUS_PLUS, AssignOrder.RETURN_ASSIGN, Variable(tokens(code)[0]), NoOp())


def test_inline_comment_keeps_statement_and_survives_as_noop():
    with_comment = list(parse("1 /*c*/;"))
    plain = list(parse("1;"))
    assert with_comment[0] == plain[0]
    assert len(with_comment) == 2
    assert isinstance(with_comment[1], NoOp)
    assert with_comment[1].token.category is Category.COMMENT
    assert with_comment[1].token.value == "/*c*/"


def test_leading_comment_is_its_own_statement():
    statements = list(parse("# header\n1;"))
    assert isinstance(statements[0], NoOp)
    assert statements[0].token.value == "# header"
    assert isinstance(statements[1], Primitive)


def test_comment_inside_operand_position_is_skipped():
    code = "a = /* x */ 2;"
    statement, comment = list(parse(code))
    assert isinstance(statement, Assign)
    assert statement.value == Primitive(tokens(code)[3])
    assert comment == NoOp(tokens(code)[2])


def test_precedence_and_associativity():
    code = "a = b = 1 + 2 * 3 ** 2 ** 1;"
    statement = single(code)
    assert isinstance(statement, Assign) and isinstance(statement.value, Assign)
    sum_ = statement.value.value
    assert sum_.category is Category.PLUS
    product = sum_.operands[1]
    assert product.category is Category.STAR
    power = product.operands[1]
    assert power.category is Category.STAR_STAR
    # right associative
    assert isinstance(power.operands[0], Primitive)
    assert power.operands[1].category is Category.STAR_STAR


def test_logical_operators_bind_looser_than_comparisons():
    statement = single("a < 1 || b == 2 && c;")
    assert statement.category is Category.PIPE_PIPE
    assert statement.operands[0].category is Category.LESS
    assert statement.operands[1].category is Category.AMPERSAND_AMPERSAND


def test_grouping_overrides_precedence():
    statement = single("(1 + 2) * 3;")
    assert statement.category is Category.STAR
    assert statement.operands[0].category is Category.PLUS


def test_compound_assignment():
    statement = single("a += 2;")
    assert statement.category is Category.PLUS_EQUAL
    assert statement.order is AssignOrder.ASSIGN_RETURN


def test_assignment_to_non_target_is_rejected():
    with pytest.raises(NASLSyntaxError) as excinfo:
        list(parse("1 = 2;"))
    assert excinfo.value.kind is SyntaxErrorKind.UNEXPECTED_TOKEN
    assert excinfo.value.token.category is Category.EQUAL


def test_call_with_positional_and_named_arguments():
    code = "f(1, b: 2);"
    toks = tokens(code)
    expected = Call(toks[0], [Primitive(toks[2]), NamedParameter(toks[4], Primitive(toks[6]))])
    assert single(code) == expected


def test_array_access_and_append_slot():
    code = "a[i + 1]; a[];"
    first, second = list(parse(code))
    assert isinstance(first, Array) and first.index.category is Category.PLUS
    assert second == Array(tokens(code)[7], None)


def test_array_literal():
    statement = single("l = [1, 'two', [3]];")
    assert isinstance(statement.value, ArrayLiteral)
    assert len(statement.value.items) == 3
    assert isinstance(statement.value.items[2], ArrayLiteral)


def test_repeat_operator_x():
    statement = single("send(data: 1) x 3;")
    assert statement.category is Category.X
    assert isinstance(statement.operands[0], Call)


def test_if_else_blocks():
    statement = single("if (a > 1) { b = 1; } else c = 2;")
    assert isinstance(statement, If)
    assert isinstance(statement.then, Block) and len(statement.then.statements) == 1
    assert isinstance(statement.otherwise, Assign)


def test_loops():
    w, r, f, e = list(
        parse(
            "while (i < 3) i++;"
            "repeat { i--; } until i == 0;"
            "for (i = 0; i < 2; i++) continue;"
            "foreach item (list) display(item);"
        )
    )
    assert isinstance(w, While) and isinstance(w.body, Assign)
    assert isinstance(r, Repeat) and isinstance(r.body, Block)
    assert isinstance(f, For) and f.condition.category is Category.LESS
    assert isinstance(e, ForEach) and e.variable.value == "item"


def test_for_with_empty_clauses():
    statement = single("for (;;) break;")
    assert statement.init == NoOp() and statement.condition == NoOp() and statement.update == NoOp()
    assert isinstance(statement.body, Break)


def test_function_declaration_and_return():
    statement = single("function add(a, b) { return a + b; }")
    assert isinstance(statement, FunctionDeclaration)
    assert statement.name.value == "add"
    assert [p.value for p in statement.parameters] == ["a", "b"]
    (ret,) = statement.body.statements
    assert isinstance(ret, Return) and ret.value.category is Category.PLUS


def test_bare_return():
    statement = single("function f() { return; }")
    assert statement.body.statements == [Return(NoOp())]


def test_exit_include_and_declarations():
    ex, inc, loc, glob = list(parse('exit(0); include("lib.inc"); local_var a, b = 2; global_var g;'))
    assert isinstance(ex, Exit) and isinstance(ex.value, Primitive)
    assert isinstance(inc, Include)
    assert isinstance(loc, Declare) and loc.scope is Keyword.LOCAL_VAR
    assert isinstance(loc.variables[0], Variable) and isinstance(loc.variables[1], Assign)
    assert isinstance(glob, Declare) and glob.scope is Keyword.GLOBAL_VAR


def test_comments_inside_block_become_noops():
    statement = single("{ # note\n a = 1; }")
    assert isinstance(statement.statements[0], NoOp)
    assert isinstance(statement.statements[1], Assign)


@pytest.mark.parametrize(
    "code, kind",
    [
        ("a = 1", SyntaxErrorKind.UNEXPECTED_END),
        ("if (a) {", SyntaxErrorKind.UNEXPECTED_END),
        ("f(1;", SyntaxErrorKind.UNEXPECTED_TOKEN),
        ("1 2;", SyntaxErrorKind.UNEXPECTED_TOKEN),
        (")", SyntaxErrorKind.UNEXPECTED_TOKEN),
        ("a.b;", SyntaxErrorKind.UNEXPECTED_TOKEN),
        ("else a;", SyntaxErrorKind.UNEXPECTED_TOKEN),
        ("x = if (a) b;", SyntaxErrorKind.UNEXPECTED_TOKEN),
    ],
)
def test_syntax_errors(code, kind):
    with pytest.raises(NASLSyntaxError) as excinfo:
        list(parse(code))
    assert excinfo.value.kind is kind


def test_nesting_limit():
    depth = MAX_DEPTH + 10
    code = "a = " + "(" * depth + "1" + ")" * depth + ";"
    with pytest.raises(NASLSyntaxError) as excinfo:
        list(parse(code))
    assert excinfo.value.kind is SyntaxErrorKind.TOO_DEEP


def test_parser_recovers_after_syntax_error():
    parser = Parser("a = ; b = 2;")
    with pytest.raises(NASLSyntaxError):
        parser.next_statement()
    statement = parser.next_statement()
    assert isinstance(statement, Assign) and statement.target.token.value == "b"
    assert parser.next_statement() is None


def test_parser_recovers_after_lex_error():
    parser = Parser("a = 1; @ b = 2;")
    assert isinstance(parser.next_statement(), Assign)
    with pytest.raises(NASLLexError):
        parser.next_statement()
    statement = parser.next_statement()
    assert statement.target.token.value == "b"


def test_parsing_is_idempotent():
    code = "function f(x) { if (x) return x * 2; return 0; } a[1] = f(x: 3); # end"
    assert list(parse(code)) == list(parse(code))


def test_classify_roles():
    toks = tokens("+ 1 a ( = if TRUE ; .")
    roles = [classify(t).role if classify(t) else None for t in toks]
    assert roles == [
        Role.OPERATOR,
        Role.PRIMITIVE,
        Role.VARIABLE,
        Role.GROUPING,
        Role.ASSIGN,
        Role.KEYWORD,
        Role.PRIMITIVE,
        Role.NOOP,
        None,
    ]


def test_recovery_skips_the_rest_of_an_enclosing_block():
    parser = Parser("function f() { a = ; leaked = 1; exit(7); } b = 2;")
    with pytest.raises(NASLSyntaxError):
        parser.next_statement()
    statement = parser.next_statement()
    assert isinstance(statement, Assign) and statement.target.token.value == "b"
    assert parser.next_statement() is None


def test_recovery_skips_nested_blocks():
    parser = Parser("if (a) { while (b) { c = ; } d = 1; } e = 2;")
    with pytest.raises(NASLSyntaxError):
        parser.next_statement()
    assert parser.next_statement().target.token.value == "e"


def test_long_operator_chain_hits_nesting_limit():
    code = "a = " + " + ".join(["1"] * (MAX_DEPTH * 2)) + "; b = 1;"
    parser = Parser(code)
    with pytest.raises(NASLSyntaxError) as excinfo:
        parser.next_statement()
    assert excinfo.value.kind is SyntaxErrorKind.TOO_DEEP
    assert parser.next_statement().target.token.value == "b"


def test_moderate_operator_chain_parses():
    statement = single("a = " + " + ".join(["1"] * (MAX_DEPTH // 2)) + ";")
    assert statement.value.category is Category.PLUS
