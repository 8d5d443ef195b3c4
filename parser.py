from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Tuple

from lexer import Category, Keyword, NASLError, NASLLexError, Token, Tokenizer


# Each nesting level costs a handful of Python frames; stay well below the
# interpreter's recursion limit.
MAX_DEPTH = 128

PREFIX_BINDING_POWER = 21
POSTFIX_BINDING_POWER = 22
ASSIGN_BINDING_POWER = (1, 0)

INFIX_BINDING_POWER = {
    Category.X: (2, 3),
    Category.PIPE_PIPE: (4, 5),
    Category.AMPERSAND_AMPERSAND: (6, 7),
    Category.EQUAL_EQUAL: (8, 9),
    Category.BANG_EQUAL: (8, 9),
    Category.LESS: (8, 9),
    Category.LESS_EQUAL: (8, 9),
    Category.GREATER: (8, 9),
    Category.GREATER_EQUAL: (8, 9),
    Category.EQUAL_TILDE: (8, 9),
    Category.BANG_TILDE: (8, 9),
    Category.GREATER_LESS: (8, 9),
    Category.GREATER_BANG_LESS: (8, 9),
    Category.PIPE: (10, 11),
    Category.CARET: (12, 13),
    Category.AMPERSAND: (14, 15),
    Category.LESS_LESS: (16, 17),
    Category.GREATER_GREATER: (16, 17),
    Category.GREATER_GREATER_GREATER: (16, 17),
    Category.PLUS: (18, 19),
    Category.MINUS: (18, 19),
    Category.STAR: (19, 20),
    Category.SLASH: (19, 20),
    Category.PERCENT: (19, 20),
    Category.STAR_STAR: (20, 20),
}

PREFIX_OPERATORS = frozenset({Category.PLUS, Category.MINUS, Category.TILDE, Category.BANG})


class SyntaxErrorKind(enum.Enum):
    UNEXPECTED_TOKEN = "unexpected_token"
    UNEXPECTED_END = "unexpected_end"
    TOO_DEEP = "too_deep"


class NASLSyntaxError(NASLError):
    """Raised when parsing fails."""

    def __init__(self, message: str, *, kind: SyntaxErrorKind, token: Optional[Token] = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.token = token
        self.position = token.position if token is not None else None
        self.line = token.line if token is not None else None
        self.column = token.column if token is not None else None


def unexpected_token(token: Token) -> NASLSyntaxError:
    return NASLSyntaxError(
        f"Unexpected token '{token.value}' ({token.category.name}) at line {token.line}, column {token.column}",
        kind=SyntaxErrorKind.UNEXPECTED_TOKEN,
        token=token,
    )


def unexpected_end(reason: str) -> NASLSyntaxError:
    return NASLSyntaxError(f"Unexpected end of input while {reason}", kind=SyntaxErrorKind.UNEXPECTED_END)


# ---- Operation classification ----

class Role(enum.Enum):
    OPERATOR = "operator"
    PRIMITIVE = "primitive"
    VARIABLE = "variable"
    GROUPING = "grouping"
    ASSIGN = "assign"
    KEYWORD = "keyword"
    NOOP = "noop"


@dataclass(frozen=True)
class Operation:
    role: Role
    category: Category
    keyword: Optional[Keyword] = None


_OPERATOR_CATEGORIES = frozenset(INFIX_BINDING_POWER) | PREFIX_OPERATORS

_ASSIGN_CATEGORIES = frozenset({
    Category.EQUAL,
    Category.PLUS_EQUAL,
    Category.MINUS_EQUAL,
    Category.STAR_EQUAL,
    Category.SLASH_EQUAL,
    Category.PERCENT_EQUAL,
    Category.LESS_LESS_EQUAL,
    Category.GREATER_GREATER_EQUAL,
    Category.GREATER_GREATER_GREATER_EQUAL,
    Category.PLUS_PLUS,
    Category.MINUS_MINUS,
})

_GROUPING_CATEGORIES = frozenset({Category.LEFT_PAREN, Category.LEFT_BRACKET, Category.LEFT_BRACE})

_NOOP_CATEGORIES = frozenset({
    Category.COMMENT,
    Category.SEMICOLON,
    Category.COMMA,
    Category.COLON,
    Category.RIGHT_PAREN,
    Category.RIGHT_BRACKET,
    Category.RIGHT_BRACE,
})

_PRIMITIVE_CATEGORIES = frozenset({Category.STRING, Category.NUMBER, Category.IPV4})

_LITERAL_KEYWORDS = frozenset({Keyword.TRUE, Keyword.FALSE, Keyword.NULL})


def classify(token: Token) -> Optional[Operation]:
    """Map a token to the parse role that handles it; None when it has none."""
    category = token.category
    if category in _OPERATOR_CATEGORIES:
        return Operation(Role.OPERATOR, category)
    if category in _ASSIGN_CATEGORIES:
        return Operation(Role.ASSIGN, category)
    if category in _PRIMITIVE_CATEGORIES:
        return Operation(Role.PRIMITIVE, category)
    if category in _GROUPING_CATEGORIES:
        return Operation(Role.GROUPING, category)
    if category in _NOOP_CATEGORIES:
        return Operation(Role.NOOP, category)
    if category is Category.IDENTIFIER:
        keyword = token.keyword
        if keyword is None:
            return Operation(Role.VARIABLE, category)
        if keyword in _LITERAL_KEYWORDS:
            return Operation(Role.PRIMITIVE, category, keyword)
        return Operation(Role.KEYWORD, category, keyword)
    return None


# ---- Statement tree ----

class Statement:
    pass


@dataclass
class Primitive(Statement):
    token: Token


@dataclass
class Variable(Statement):
    token: Token


@dataclass
class Array(Statement):
    token: Token
    index: Optional[Statement] = None


@dataclass
class NamedParameter(Statement):
    token: Token
    value: Statement


@dataclass
class Call(Statement):
    token: Token
    arguments: List[Statement]


@dataclass
class ArrayLiteral(Statement):
    items: List[Statement]


@dataclass
class Operator(Statement):
    category: Category
    operands: List[Statement]
    token: Optional[Token] = field(default=None, compare=False, repr=False)


class AssignOrder(enum.Enum):
    ASSIGN_RETURN = "assign_return"
    RETURN_ASSIGN = "return_assign"


@dataclass
class Assign(Statement):
    category: Category
    order: AssignOrder
    target: Statement
    value: Statement
    token: Optional[Token] = field(default=None, compare=False, repr=False)


@dataclass
class NoOp(Statement):
    token: Optional[Token] = None


@dataclass
class Block(Statement):
    statements: List[Statement]


@dataclass
class If(Statement):
    condition: Statement
    then: Statement
    otherwise: Optional[Statement]


@dataclass
class While(Statement):
    condition: Statement
    body: Statement


@dataclass
class Repeat(Statement):
    body: Statement
    condition: Statement


@dataclass
class For(Statement):
    init: Statement
    condition: Statement
    update: Statement
    body: Statement


@dataclass
class ForEach(Statement):
    variable: Token
    iterable: Statement
    body: Statement


@dataclass
class FunctionDeclaration(Statement):
    name: Token
    parameters: List[Token]
    body: Block


@dataclass
class Return(Statement):
    value: Statement


@dataclass
class Break(Statement):
    token: Token


@dataclass
class Continue(Statement):
    token: Token


@dataclass
class Exit(Statement):
    value: Statement


@dataclass
class Include(Statement):
    value: Statement


@dataclass
class Declare(Statement):
    scope: Keyword
    variables: List[Statement]


EXPRESSIONS = (Primitive, Variable, Array, Call, ArrayLiteral, Operator, Assign)

# Forms that consume their own terminator.
COMPOUND = (
    Block,
    If,
    While,
    Repeat,
    For,
    ForEach,
    FunctionDeclaration,
    Return,
    Break,
    Continue,
    Exit,
    Include,
    Declare,
)


# ---- Parser ----

class EndKind(enum.Enum):
    CONTINUE = "continue"
    OPEN_END = "open_end"
    BREAK = "break"


@dataclass(frozen=True)
class End:
    kind: EndKind
    category: Optional[Category] = None


CONTINUE = End(EndKind.CONTINUE)
OPEN_END = End(EndKind.OPEN_END)

Abort = Callable[[Category], bool]

_BRACE_STEP = {Category.LEFT_BRACE: 1, Category.RIGHT_BRACE: -1}
_BOUNDARIES = (Category.SEMICOLON, Category.RIGHT_BRACE)


def _never(_: Category) -> bool:
    return False


def _stop_at(*categories: Category) -> Abort:
    stops = frozenset(categories)
    return lambda category: category in stops


class Parser:
    """Pratt parser producing one top-level statement at a time.

    Comments at statement position become NoOp statements. Comments inside
    an expression are skipped by the expression and then emitted as NoOp
    statements right after the statement that contained them.
    """

    def __init__(self, code: str, filename: str = "<string>") -> None:
        self.code = code
        self.filename = filename
        self.tokenizer = Tokenizer(code, filename)
        self._tokens = self.tokenizer.tokens()
        self._pending: List[Token] = []
        self._detached: List[Token] = []
        self._last: Optional[Token] = None
        self._depth = 0
        # Braces opened and not yet closed by the current top-level statement.
        self._open_braces = 0

    def __iter__(self) -> Iterator[Statement]:
        while True:
            statement = self.next_statement()
            if statement is None:
                return
            yield statement

    def next_statement(self) -> Optional[Statement]:
        """Parse the next top-level statement, or return None at end of input.

        On a lexical or syntax error the parser skips ahead to the next
        statement boundary before re-raising, so the caller may keep going.
        """
        if self._detached:
            return NoOp(self._detached.pop(0))
        self._depth = 0
        self._open_braces = 0
        try:
            if self._peek(comments=True) is None:
                return None
            end, statement = self.statement(0, _never)
            self._check_terminated(end, statement)
        except (NASLSyntaxError, NASLLexError):
            self._synchronize()
            raise
        return statement

    def statement(self, min_bp: int, abort: Abort) -> Tuple[End, Statement]:
        token = self._next_token(comments=True)
        if token is None:
            raise unexpected_end("parsing statement")
        try:
            self._nest(token)
            end, left = self.prefix_statement(token, abort)
            if end.kind is not EndKind.CONTINUE:
                return end, left
            return self._infix_statement(left, min_bp, abort)
        finally:
            self._depth -= 1

    def prefix_statement(self, token: Token, abort: Abort) -> Tuple[End, Statement]:
        operation = classify(token)
        if operation is None:
            raise unexpected_token(token)
        role = operation.role
        if role is Role.OPERATOR:
            if token.category not in PREFIX_OPERATORS:
                raise unexpected_token(token)
            end, right = self._operand(PREFIX_BINDING_POWER, abort)
            state = CONTINUE if end.kind is EndKind.CONTINUE else end
            return state, Operator(token.category, [right], token=token)
        if role is Role.PRIMITIVE:
            return CONTINUE, Primitive(token)
        if role is Role.VARIABLE:
            return CONTINUE, self._parse_variable(token)
        if role is Role.GROUPING:
            return self._parse_grouping(token)
        if role is Role.ASSIGN:
            if token.category in (Category.PLUS_PLUS, Category.MINUS_MINUS):
                return CONTINUE, self._parse_prefix_assign(token)
            raise unexpected_token(token)
        if role is Role.KEYWORD:
            return self._parse_keyword(operation.keyword, token)
        if token.category is Category.COMMENT:
            return OPEN_END, NoOp(token)
        return End(EndKind.BREAK, token.category), NoOp(token)

    def _nest(self, token: Token) -> None:
        self._depth += 1
        if self._depth > MAX_DEPTH:
            raise NASLSyntaxError(
                f"Statement nested deeper than {MAX_DEPTH} levels at line {token.line}",
                kind=SyntaxErrorKind.TOO_DEEP,
                token=token,
            )

    def _infix_statement(self, left: Statement, min_bp: int, abort: Abort) -> Tuple[End, Statement]:
        # Every operator node wraps the tree built so far, so a long chain nests
        # as deeply as a parenthesized one.
        depth = self._depth
        try:
            return self._infix_loop(left, min_bp, abort)
        finally:
            self._depth = depth

    def _infix_loop(self, left: Statement, min_bp: int, abort: Abort) -> Tuple[End, Statement]:
        while True:
            token = self._peek()
            if token is None:
                return CONTINUE, left
            category = token.category
            if abort(category):
                return CONTINUE, left
            operation = classify(token)
            if operation is None:
                raise unexpected_token(token)
            role = operation.role

            if role is Role.NOOP:
                self._next_token()
                return End(EndKind.BREAK, category), left

            if role is Role.ASSIGN:
                if category in (Category.PLUS_PLUS, Category.MINUS_MINUS):
                    if POSTFIX_BINDING_POWER < min_bp:
                        return CONTINUE, left
                    self._require_assignable(left, token)
                    self._next_token()
                    self._nest(token)
                    left = Assign(category, AssignOrder.RETURN_ASSIGN, left, NoOp(), token=token)
                    continue
                l_bp, r_bp = ASSIGN_BINDING_POWER
                if l_bp < min_bp:
                    return CONTINUE, left
                self._require_assignable(left, token)
                self._next_token()
                self._nest(token)
                end, right = self._operand(r_bp, abort)
                left = Assign(category, AssignOrder.ASSIGN_RETURN, left, right, token=token)
                if end.kind is EndKind.BREAK:
                    return end, left
                continue

            # A bare identifier `x` after an operand can only be the repeat operator.
            if role is Role.VARIABLE and token.value == Category.X.value:
                category = Category.X
            elif role is not Role.OPERATOR or category not in INFIX_BINDING_POWER:
                raise unexpected_token(token)
            l_bp, r_bp = INFIX_BINDING_POWER[category]
            if l_bp < min_bp:
                return CONTINUE, left
            self._next_token()
            self._nest(token)
            end, right = self._operand(r_bp, abort)
            left = Operator(category, [left, right], token=token)
            if end.kind is EndKind.BREAK:
                return end, left

    def _operand(self, min_bp: int, abort: Abort) -> Tuple[End, Statement]:
        self._skip_comments()
        start = self._peek()
        if start is None:
            raise unexpected_end("parsing operand")
        end, statement = self.statement(min_bp, abort)
        if not isinstance(statement, EXPRESSIONS):
            raise unexpected_token(start)
        return end, statement

    def _parse_prefix_assign(self, token: Token) -> Assign:
        target_token = self._next_token()
        if target_token is None:
            raise unexpected_end("parsing prefix statement")
        operation = classify(target_token)
        if operation is None or operation.role is not Role.VARIABLE:
            raise unexpected_token(target_token)
        target = self._parse_variable(target_token)
        if not isinstance(target, (Variable, Array)):
            raise unexpected_token(token)
        return Assign(token.category, AssignOrder.ASSIGN_RETURN, target, NoOp(), token=token)

    def _parse_variable(self, token: Token) -> Statement:
        if self._match(Category.LEFT_PAREN):
            return Call(token, self._parse_arguments())
        if self._match(Category.LEFT_BRACKET):
            if self._match(Category.RIGHT_BRACKET):
                return Array(token, None)
            end, index = self._operand(0, _stop_at(Category.RIGHT_BRACKET))
            self._expect_closing(end, Category.RIGHT_BRACKET, "parsing array index")
            return Array(token, index)
        return Variable(token)

    def _parse_arguments(self) -> List[Statement]:
        arguments: List[Statement] = []
        if self._match(Category.RIGHT_PAREN):
            return arguments
        stop = _stop_at(Category.COMMA, Category.RIGHT_PAREN, Category.COLON)
        while True:
            end, argument = self._operand(0, stop)
            delimiter = self._delimiter(end, "parsing function arguments")
            if delimiter.category is Category.COLON:
                if not isinstance(argument, Variable):
                    raise unexpected_token(delimiter)
                end, value = self._operand(0, _stop_at(Category.COMMA, Category.RIGHT_PAREN))
                argument = NamedParameter(argument.token, value)
                delimiter = self._delimiter(end, "parsing function arguments")
            arguments.append(argument)
            if delimiter.category is Category.RIGHT_PAREN:
                return arguments
            if delimiter.category is not Category.COMMA:
                raise unexpected_token(delimiter)

    def _parse_grouping(self, token: Token) -> Tuple[End, Statement]:
        if token.category is Category.LEFT_PAREN:
            end, inner = self._operand(0, _stop_at(Category.RIGHT_PAREN))
            self._expect_closing(end, Category.RIGHT_PAREN, "parsing grouping")
            return CONTINUE, inner
        if token.category is Category.LEFT_BRACKET:
            items: List[Statement] = []
            if not self._match(Category.RIGHT_BRACKET):
                stop = _stop_at(Category.COMMA, Category.RIGHT_BRACKET)
                while True:
                    end, item = self._operand(0, stop)
                    items.append(item)
                    delimiter = self._delimiter(end, "parsing array literal")
                    if delimiter.category is Category.RIGHT_BRACKET:
                        break
                    if delimiter.category is not Category.COMMA:
                        raise unexpected_token(delimiter)
            return CONTINUE, ArrayLiteral(items)
        return End(EndKind.BREAK, Category.RIGHT_BRACE), self._parse_block()

    def _parse_block(self) -> Block:
        statements: List[Statement] = []
        while True:
            upcoming = self._peek(comments=True)
            if upcoming is None:
                raise unexpected_end("parsing block")
            if upcoming.category is Category.RIGHT_BRACE:
                self._next_token()
                statements.extend(self._drain_detached())
                return Block(statements)
            end, statement = self.statement(0, _never)
            self._check_terminated(end, statement)
            statements.append(statement)
            statements.extend(self._drain_detached())

    def _parse_keyword(self, keyword: Optional[Keyword], token: Token) -> Tuple[End, Statement]:
        if keyword is Keyword.IF:
            return self._parse_if()
        if keyword is Keyword.WHILE:
            return self._parse_while()
        if keyword is Keyword.REPEAT:
            return self._parse_repeat()
        if keyword is Keyword.FOR:
            return self._parse_for()
        if keyword is Keyword.FOREACH:
            return self._parse_foreach()
        if keyword is Keyword.FUNCTION:
            return self._parse_function()
        if keyword is Keyword.RETURN:
            return self._parse_return()
        if keyword is Keyword.BREAK:
            self._expect(Category.SEMICOLON, "parsing break")
            return End(EndKind.BREAK, Category.SEMICOLON), Break(token)
        if keyword is Keyword.CONTINUE:
            self._expect(Category.SEMICOLON, "parsing continue")
            return End(EndKind.BREAK, Category.SEMICOLON), Continue(token)
        if keyword is Keyword.EXIT:
            value = self._parse_parenthesized("parsing exit", allow_empty=True)
            self._expect(Category.SEMICOLON, "parsing exit")
            return End(EndKind.BREAK, Category.SEMICOLON), Exit(value)
        if keyword is Keyword.INCLUDE:
            value = self._parse_parenthesized("parsing include")
            self._expect(Category.SEMICOLON, "parsing include")
            return End(EndKind.BREAK, Category.SEMICOLON), Include(value)
        if keyword in (Keyword.LOCAL_VAR, Keyword.GLOBAL_VAR):
            return self._parse_declaration(keyword)
        # else/until only appear inside their own constructs
        raise unexpected_token(token)

    def _parse_if(self) -> Tuple[End, If]:
        condition = self._parse_parenthesized("parsing if condition")
        end, then = self._parse_body("parsing if body")
        otherwise: Optional[Statement] = None
        upcoming = self._peek()
        if upcoming is not None and upcoming.keyword is Keyword.ELSE:
            self._next_token()
            end, otherwise = self._parse_body("parsing else body")
        return end, If(condition, then, otherwise)

    def _parse_while(self) -> Tuple[End, While]:
        condition = self._parse_parenthesized("parsing while condition")
        end, body = self._parse_body("parsing while body")
        return end, While(condition, body)

    def _parse_repeat(self) -> Tuple[End, Repeat]:
        _, body = self._parse_body("parsing repeat body")
        until = self._next_token()
        if until is None:
            raise unexpected_end("parsing repeat")
        if until.keyword is not Keyword.UNTIL:
            raise unexpected_token(until)
        end, condition = self._operand(0, _never)
        self._expect_semicolon(end, "parsing until condition")
        return end, Repeat(body, condition)

    def _parse_for(self) -> Tuple[End, For]:
        self._expect(Category.LEFT_PAREN, "parsing for loop")
        init = self._parse_clause(Category.SEMICOLON)
        condition = self._parse_clause(Category.SEMICOLON)
        update = self._parse_clause(Category.RIGHT_PAREN)
        end, body = self._parse_body("parsing for body")
        return end, For(init, condition, update, body)

    def _parse_clause(self, closing: Category) -> Statement:
        if self._match(closing):
            return NoOp()
        end, clause = self._operand(0, _stop_at(closing))
        self._expect_closing(end, closing, "parsing for loop")
        return clause

    def _parse_foreach(self) -> Tuple[End, ForEach]:
        variable = self._next_token()
        if variable is None:
            raise unexpected_end("parsing foreach")
        operation = classify(variable)
        if operation is None or operation.role is not Role.VARIABLE:
            raise unexpected_token(variable)
        iterable = self._parse_parenthesized("parsing foreach")
        end, body = self._parse_body("parsing foreach body")
        return end, ForEach(variable, iterable, body)

    def _parse_function(self) -> Tuple[End, FunctionDeclaration]:
        name = self._expect_identifier("parsing function name")
        self._expect(Category.LEFT_PAREN, "parsing function parameters")
        parameters: List[Token] = []
        if not self._match(Category.RIGHT_PAREN):
            while True:
                parameters.append(self._expect_identifier("parsing function parameters"))
                delimiter = self._next_token()
                if delimiter is None:
                    raise unexpected_end("parsing function parameters")
                if delimiter.category is Category.RIGHT_PAREN:
                    break
                if delimiter.category is not Category.COMMA:
                    raise unexpected_token(delimiter)
        self._expect(Category.LEFT_BRACE, "parsing function body")
        body = self._parse_block()
        return End(EndKind.BREAK, Category.RIGHT_BRACE), FunctionDeclaration(name, parameters, body)

    def _parse_return(self) -> Tuple[End, Return]:
        if self._match(Category.SEMICOLON):
            return End(EndKind.BREAK, Category.SEMICOLON), Return(NoOp())
        end, value = self._operand(0, _never)
        self._expect_semicolon(end, "parsing return")
        return end, Return(value)

    def _parse_declaration(self, keyword: Keyword) -> Tuple[End, Declare]:
        variables: List[Statement] = []
        stop = _stop_at(Category.COMMA, Category.SEMICOLON)
        while True:
            self._skip_comments()
            start = self._peek()
            end, item = self._operand(0, stop)
            declares_name = isinstance(item, Variable) or (
                isinstance(item, Assign) and item.category is Category.EQUAL and isinstance(item.target, Variable)
            )
            if not declares_name:
                raise unexpected_token(start)
            variables.append(item)
            delimiter = self._delimiter(end, f"parsing {keyword.value}")
            if delimiter.category is Category.SEMICOLON:
                return End(EndKind.BREAK, Category.SEMICOLON), Declare(keyword, variables)
            if delimiter.category is not Category.COMMA:
                raise unexpected_token(delimiter)

    def _parse_body(self, reason: str) -> Tuple[End, Statement]:
        self._skip_comments()
        if self._peek() is None:
            raise unexpected_end(reason)
        end, body = self.statement(0, _never)
        self._check_terminated(end, body)
        return end, body

    def _parse_parenthesized(self, reason: str, allow_empty: bool = False) -> Statement:
        self._expect(Category.LEFT_PAREN, reason)
        if allow_empty and self._match(Category.RIGHT_PAREN):
            return NoOp()
        end, inner = self._operand(0, _stop_at(Category.RIGHT_PAREN))
        self._expect_closing(end, Category.RIGHT_PAREN, reason)
        return inner

    # ---- helpers ----

    def _check_terminated(self, end: End, statement: Statement) -> None:
        if isinstance(statement, NoOp):
            token = statement.token
            if token is None or token.category in (Category.SEMICOLON, Category.COMMENT):
                return
            raise unexpected_token(token)
        if isinstance(statement, COMPOUND):
            return
        if end.kind is EndKind.BREAK and end.category is Category.SEMICOLON:
            return
        if end.kind is EndKind.CONTINUE:
            raise unexpected_end("looking for ';'")
        assert self._last is not None
        raise unexpected_token(self._last)

    def _require_assignable(self, target: Statement, token: Token) -> None:
        if not isinstance(target, (Variable, Array)):
            raise unexpected_token(token)

    def _expect_semicolon(self, end: End, reason: str) -> None:
        if end.kind is EndKind.CONTINUE:
            raise unexpected_end(reason)
        if end.category is not Category.SEMICOLON:
            assert self._last is not None
            raise unexpected_token(self._last)

    def _expect_closing(self, end: End, closing: Category, reason: str) -> None:
        if end.kind is EndKind.BREAK:
            # The operand swallowed a terminator that does not close this construct.
            assert self._last is not None
            raise unexpected_token(self._last)
        self._expect(closing, reason)

    def _delimiter(self, end: End, reason: str) -> Token:
        if end.kind is EndKind.BREAK:
            assert self._last is not None
            raise unexpected_token(self._last)
        delimiter = self._next_token()
        if delimiter is None:
            raise unexpected_end(reason)
        return delimiter

    def _expect(self, category: Category, reason: str) -> Token:
        token = self._next_token()
        if token is None:
            raise unexpected_end(reason)
        if token.category is not category:
            raise unexpected_token(token)
        return token

    def _expect_identifier(self, reason: str) -> Token:
        token = self._next_token()
        if token is None:
            raise unexpected_end(reason)
        operation = classify(token)
        if operation is None or operation.role is not Role.VARIABLE:
            raise unexpected_token(token)
        return token

    def _match(self, category: Category) -> bool:
        token = self._peek()
        if token is not None and token.category is category:
            self._next_token()
            return True
        return False

    def _peek(self, comments: bool = False) -> Optional[Token]:
        i = 0
        while True:
            if i >= len(self._pending):
                token = self._pull()
                if token is None:
                    return None
                self._pending.append(token)
            token = self._pending[i]
            if comments or token.category is not Category.COMMENT:
                return token
            i += 1

    def _next_token(self, comments: bool = False) -> Optional[Token]:
        while True:
            if self._pending:
                token = self._pending.pop(0)
            else:
                token = self._pull()
                if token is None:
                    return None
            if comments or token.category is not Category.COMMENT:
                self._last = token
                self._open_braces += _BRACE_STEP.get(token.category, 0)
                return token
            self._detached.append(token)

    def _skip_comments(self) -> None:
        while True:
            token = self._peek(comments=True)
            if token is None or token.category is not Category.COMMENT:
                return
            self._detached.append(self._pending.pop(0))

    def _drain_detached(self) -> List[NoOp]:
        drained = [NoOp(token) for token in self._detached]
        self._detached.clear()
        return drained

    def _pull(self) -> Optional[Token]:
        try:
            return next(self._tokens, None)
        except NASLLexError as error:
            # Resume scanning after the offending input.
            self._tokens = self.tokenizer.tokens(error.position[1])
            raise

    def _synchronize(self) -> None:
        """Skip the rest of the failing top-level statement, nested blocks included."""
        self._detached.clear()
        token = self._last
        while True:
            if self._open_braces <= 0 and token is not None and token.category in _BOUNDARIES:
                return
            try:
                token = self._next_token()
            except NASLLexError:
                token = None
                continue
            if token is None:
                return


def parse(code: str, filename: str = "<string>") -> Iterator[Statement]:
    """Yield the top-level statements of code, raising on the first error."""
    return iter(Parser(code, filename))
