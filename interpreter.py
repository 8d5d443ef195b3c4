from __future__ import annotations
import copy
import enum
import json
import logging
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, Union

import numpy as np

from lexer import Category, Keyword, NASLError, NASLLexError, StringKind, Token
from extensions import FunctionError, FunctionTable, NASLExtensionError, NativeFunction, build_default_functions
from parser import (
    Array,
    ArrayLiteral,
    Assign,
    AssignOrder,
    Block,
    Break,
    Call,
    Continue,
    Declare,
    Exit,
    For,
    ForEach,
    FunctionDeclaration,
    If,
    Include,
    NamedParameter,
    NASLSyntaxError,
    NoOp,
    Operator,
    Parser,
    Primitive,
    Repeat,
    Return,
    Statement,
    Variable,
    While,
)


logger = logging.getLogger(__name__)

TYPE_NULL = "NULL"
TYPE_INT = "INT"
TYPE_STR = "STR"
TYPE_BOOL = "BOOL"
TYPE_ARRAY = "ARRAY"
TYPE_DICT = "DICT"

FC_ANON_ARGS = "_FC_ANON_ARGS"

_MASK64 = 0xFFFFFFFFFFFFFFFF
_INTEGER_LITERAL = re.compile(r"[+-]?[0-9]+")
_ESCAPE = re.compile(r"\\(x[0-9a-fA-F]{2}|.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", "'": "'", '"': '"'}


@dataclass
class Value:
    type: str
    value: Any

    def to_python(self) -> Any:
        """Plain JSON-ready rendering of the value."""
        if self.type == TYPE_ARRAY:
            return [item.to_python() for item in self.value]
        if self.type == TYPE_DICT:
            return {key: item.to_python() for key, item in self.value.items()}
        return self.value


def null() -> Value:
    return Value(TYPE_NULL, None)


def wrap_int(number: int) -> int:
    """Reduce a Python int to the signed 64-bit range, wrapping on overflow."""
    return int(np.array(number & _MASK64, dtype=np.uint64).astype(np.int64))


def copy_value(value: Value) -> Value:
    if value.type in (TYPE_ARRAY, TYPE_DICT):
        return copy.deepcopy(value)
    return value


def truthy(value: Value) -> bool:
    vtype = value.type
    if vtype == TYPE_NULL:
        return False
    if vtype in (TYPE_INT, TYPE_BOOL):
        return bool(value.value)
    if vtype == TYPE_STR:
        return value.value not in ("", "0")
    return len(value.value) > 0


def to_display(value: Value) -> str:
    vtype = value.type
    if vtype == TYPE_NULL:
        return ""
    if vtype == TYPE_BOOL:
        return "1" if value.value else "0"
    if vtype == TYPE_INT:
        return str(value.value)
    if vtype == TYPE_STR:
        return value.value
    if vtype == TYPE_ARRAY:
        return "[ " + ", ".join(to_display(item) for item in value.value) + " ]"
    return "{ " + ", ".join(f"{key}: {to_display(item)}" for key, item in value.value.items()) + " }"


def unescape(text: str) -> str:
    def _replace(match: "re.Match[str]") -> str:
        code = match.group(1)
        if code.startswith("x") and len(code) == 3:
            return chr(int(code[1:], 16))
        return _ESCAPES.get(code, match.group(0))

    return _ESCAPE.sub(_replace, text)


# ---- integer helpers ----

def _safe_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def _safe_mod(a: int, b: int) -> int:
    return a - b * _safe_div(a, b)


def _safe_pow(a: int, b: int) -> int:
    if b >= 0:
        return pow(a, b, 1 << 64)
    # Truncated reciprocal: only the units survive.
    if a == 1:
        return 1
    if a == -1:
        return 1 if b % 2 == 0 else -1
    return 0


def _shift_left(value: int, amount: int) -> int:
    return value << (amount & 63)


def _shift_right(value: int, amount: int) -> int:
    return value >> (amount & 63)


def _shift_right_logical(value: int, amount: int) -> int:
    shifted = np.right_shift(np.uint64(value & _MASK64), np.uint64(amount & 63))
    return int(shifted)


_INT_OPERATIONS = {
    Category.PLUS: lambda a, b: a + b,
    Category.MINUS: lambda a, b: a - b,
    Category.STAR: lambda a, b: a * b,
    Category.SLASH: _safe_div,
    Category.PERCENT: _safe_mod,
    Category.STAR_STAR: _safe_pow,
    Category.LESS_LESS: _shift_left,
    Category.GREATER_GREATER: _shift_right,
    Category.GREATER_GREATER_GREATER: _shift_right_logical,
    Category.AMPERSAND: lambda a, b: a & b,
    Category.PIPE: lambda a, b: a | b,
    Category.CARET: lambda a, b: a ^ b,
}

_COMPOUND_OPERATORS = {
    Category.PLUS_EQUAL: Category.PLUS,
    Category.MINUS_EQUAL: Category.MINUS,
    Category.STAR_EQUAL: Category.STAR,
    Category.SLASH_EQUAL: Category.SLASH,
    Category.PERCENT_EQUAL: Category.PERCENT,
    Category.LESS_LESS_EQUAL: Category.LESS_LESS,
    Category.GREATER_GREATER_EQUAL: Category.GREATER_GREATER,
    Category.GREATER_GREATER_GREATER_EQUAL: Category.GREATER_GREATER_GREATER,
}

_ORDERINGS = {
    Category.LESS: lambda a, b: a < b,
    Category.LESS_EQUAL: lambda a, b: a <= b,
    Category.GREATER: lambda a, b: a > b,
    Category.GREATER_EQUAL: lambda a, b: a >= b,
}

_SCALARS = (TYPE_NULL, TYPE_INT, TYPE_STR, TYPE_BOOL)


# ---- errors and signals ----

class InterpretErrorKind(enum.Enum):
    UNDECLARED_VARIABLE = "undeclared_variable"
    TYPE_MISMATCH = "type_mismatch"
    INDEX_OUT_OF_RANGE = "index_out_of_range"
    NOT_AN_ARRAY = "not_an_array"
    UNKNOWN_FUNCTION = "unknown_function"
    DIVISION_BY_ZERO = "division_by_zero"
    INVALID_CONTROL_FLOW = "invalid_control_flow"
    RECURSION_LIMIT = "recursion_limit"
    FUNCTION_ERROR = "function_error"


class InterpretError(NASLError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        kind: InterpretErrorKind,
        token: Optional[Token] = None,
        cause: Optional[FunctionError] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.token = token
        self.cause = cause
        self.position = token.position if token is not None else None
        self.line = token.line if token is not None else None
        self.column = token.column if token is not None else None


class LoadErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    IO = "io"


class LoadError(NASLError):
    def __init__(self, message: str, *, kind: LoadErrorKind, name: str) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.name = name


class ReturnSignal(Exception):
    def __init__(self, value: Value) -> None:
        super().__init__(value)
        self.value = value


class ExitSignal(Exception):
    def __init__(self, value: Value) -> None:
        super().__init__(value)
        self.value = value


class BreakSignal(Exception):
    def __init__(self, token: Token) -> None:
        super().__init__(token)
        self.token = token


class ContinueSignal(Exception):
    def __init__(self, token: Token) -> None:
        super().__init__(token)
        self.token = token


# ---- register ----

@dataclass(frozen=True)
class NaslFunction:
    name: str
    parameters: Tuple[str, ...]
    body: Block


ContextType = Union[Value, NaslFunction]


@dataclass
class Scope:
    parent: Optional[int]
    bindings: Dict[str, ContextType] = field(default_factory=dict)


class Register:
    """Stack of variable scopes.

    Scope 0 is the global scope. Lookups start at the innermost scope and
    follow parent indices, so a call scope parented on 0 sees globals but
    none of its caller's locals.
    """

    def __init__(self, initial: Optional[Dict[str, ContextType]] = None) -> None:
        self.scopes: List[Scope] = [Scope(parent=None, bindings=dict(initial or {}))]

    @property
    def depth(self) -> int:
        return len(self.scopes)

    def push(self, bindings: Optional[Dict[str, ContextType]] = None, parent: int = 0) -> int:
        self.scopes.append(Scope(parent=parent, bindings=dict(bindings or {})))
        return len(self.scopes) - 1

    def pop(self) -> Scope:
        if len(self.scopes) == 1:
            raise IndexError("cannot pop the global scope")
        return self.scopes.pop()

    @contextmanager
    def scope(self, bindings: Optional[Dict[str, ContextType]] = None, parent: int = 0) -> Iterator[int]:
        index = self.push(bindings, parent)
        try:
            yield index
        finally:
            del self.scopes[index:]

    def _chain(self) -> Iterator[Scope]:
        index: Optional[int] = len(self.scopes) - 1
        while index is not None:
            scope = self.scopes[index]
            yield scope
            index = scope.parent

    def find(self, name: str) -> Optional[Scope]:
        for scope in self._chain():
            if name in scope.bindings:
                return scope
        return None

    def lookup(self, name: str) -> Optional[ContextType]:
        scope = self.find(name)
        return scope.bindings[name] if scope is not None else None

    def named(self, name: str) -> Optional[Value]:
        binding = self.lookup(name)
        return binding if isinstance(binding, Value) else None

    def positional(self) -> List[Value]:
        args = self.scopes[-1].bindings.get(FC_ANON_ARGS)
        if isinstance(args, Value) and args.type == TYPE_ARRAY:
            return list(args.value)
        return []

    def declare(self, name: str, value: ContextType) -> None:
        self.scopes[-1].bindings[name] = value

    def declare_global(self, name: str, value: ContextType) -> None:
        self.scopes[0].bindings[name] = value

    def assign(self, name: str, value: ContextType) -> None:
        """Overwrite the visible binding, declaring it innermost if there is none."""
        scope = self.find(name)
        (scope or self.scopes[-1]).bindings[name] = value

    def update(self, name: str, value: ContextType) -> bool:
        scope = self.find(name)
        if scope is None:
            return False
        scope.bindings[name] = value
        return True

    def snapshot(self) -> Dict[str, str]:
        visible: Dict[str, str] = {}
        for scope in self._chain():
            for name, binding in scope.bindings.items():
                if name in visible:
                    continue
                if isinstance(binding, NaslFunction):
                    visible[name] = f"function({', '.join(binding.parameters)})"
                else:
                    visible[name] = f"{binding.type}:{to_display(binding)}"
        return visible


# ---- loaders and context ----

class Loader(Protocol):
    def load(self, name: str) -> str: ...


class NoOpLoader:
    def load(self, name: str) -> str:
        raise LoadError(f"No loader configured to include '{name}'", kind=LoadErrorKind.NOT_FOUND, name=name)


class FSPluginLoader:
    """Loads include files from a plugin directory."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    def load(self, name: str) -> str:
        path = os.path.abspath(os.path.join(self.root, name))
        if os.path.commonpath([self.root, path]) != self.root or not os.path.isfile(path):
            raise LoadError(f"Include file '{name}' not found in {self.root}", kind=LoadErrorKind.NOT_FOUND, name=name)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise LoadError(f"Failed to read include file '{name}': {exc}", kind=LoadErrorKind.IO, name=name) from exc


def _default_functions() -> Tuple[FunctionTable, ...]:
    return (build_default_functions(),)


@dataclass(frozen=True)
class Context:
    target: str = ""
    loader: Loader = field(default_factory=NoOpLoader)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("nasl.script"))
    functions: Tuple[FunctionTable, ...] = field(default_factory=_default_functions)

    def lookup(self, name: str) -> Optional[NativeFunction]:
        for table in self.functions:
            function = table.lookup(name)
            if function is not None:
                return function
        return None


# ---- interpreter ----

@dataclass
class Frame:
    name: str
    token: Optional[Token]


@dataclass(frozen=True)
class ScriptResult:
    statement: Optional[Statement]
    value: Optional[Value]
    error: Optional[NASLError] = None
    exited: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class Interpreter:
    def __init__(
        self,
        register: Optional[Register] = None,
        context: Optional[Context] = None,
        *,
        filename: str = "<string>",
    ) -> None:
        self.register = register if register is not None else Register()
        self.context = context if context is not None else Context()
        self.filename = filename
        self.call_stack: List[Frame] = []

    def execute(self, code: str, filename: Optional[str] = None) -> Iterator[ScriptResult]:
        """Parse and run code, yielding one result per top-level statement.

        A failing statement yields its error and the run moves on to the next
        statement. exit() yields its value and ends the run.
        """
        parser = Parser(code, filename or self.filename)
        while True:
            try:
                statement = parser.next_statement()
            except (NASLLexError, NASLSyntaxError) as error:
                logger.debug("parse error: %s", error)
                self.call_stack = []
                yield ScriptResult(None, None, error)
                continue
            if statement is None:
                return
            self.call_stack = [Frame("<top-level>", None)]
            try:
                value = self.run_statement(statement)
            except ExitSignal as signal:
                logger.debug("exit(%s)", to_display(signal.value))
                yield ScriptResult(statement, signal.value, exited=True)
                return
            except NASLError as error:
                logger.debug("statement failed: %s", error)
                yield ScriptResult(statement, None, error)
                continue
            yield ScriptResult(statement, value)

    def run_statement(self, statement: Statement) -> Value:
        """Resolve a top-level statement, rejecting control flow that escapes it."""
        try:
            return self.resolve(statement)
        except ReturnSignal:
            raise InterpretError("return outside of a function", kind=InterpretErrorKind.INVALID_CONTROL_FLOW) from None
        except BreakSignal as signal:
            raise InterpretError(
                "break outside of a loop", kind=InterpretErrorKind.INVALID_CONTROL_FLOW, token=signal.token
            ) from None
        except ContinueSignal as signal:
            raise InterpretError(
                "continue outside of a loop", kind=InterpretErrorKind.INVALID_CONTROL_FLOW, token=signal.token
            ) from None
        except RecursionError as exc:
            frame = self.call_stack[-1] if self.call_stack else None
            raise InterpretError(
                "maximum recursion depth exceeded",
                kind=InterpretErrorKind.RECURSION_LIMIT,
                token=frame.token if frame else None,
            ) from exc

    def resolve(self, statement: Statement) -> Value:
        if isinstance(statement, Primitive):
            return self._primitive(statement.token)
        if isinstance(statement, Variable):
            return self._variable(statement.token)
        if isinstance(statement, Array):
            return self._array(statement)
        if isinstance(statement, Operator):
            return self._operator(statement)
        if isinstance(statement, Assign):
            return self._assign(statement)
        if isinstance(statement, Call):
            return self._call(statement)
        if isinstance(statement, ArrayLiteral):
            return Value(TYPE_ARRAY, [copy_value(self.resolve(item)) for item in statement.items])
        if isinstance(statement, NamedParameter):
            return self.resolve(statement.value)
        if isinstance(statement, NoOp):
            return null()
        if isinstance(statement, Block):
            for inner in statement.statements:
                self.resolve(inner)
            return null()
        if isinstance(statement, If):
            if truthy(self.resolve(statement.condition)):
                self.resolve(statement.then)
            elif statement.otherwise is not None:
                self.resolve(statement.otherwise)
            return null()
        if isinstance(statement, While):
            return self._execute_while(statement)
        if isinstance(statement, Repeat):
            return self._execute_repeat(statement)
        if isinstance(statement, For):
            return self._execute_for(statement)
        if isinstance(statement, ForEach):
            return self._execute_foreach(statement)
        if isinstance(statement, FunctionDeclaration):
            name = statement.name.value
            function = NaslFunction(name, tuple(p.value for p in statement.parameters), statement.body)
            self.register.declare_global(name, function)
            return null()
        if isinstance(statement, Return):
            raise ReturnSignal(copy_value(self.resolve(statement.value)))
        if isinstance(statement, Break):
            raise BreakSignal(statement.token)
        if isinstance(statement, Continue):
            raise ContinueSignal(statement.token)
        if isinstance(statement, Exit):
            raise ExitSignal(self.resolve(statement.value))
        if isinstance(statement, Include):
            return self._include(statement)
        if isinstance(statement, Declare):
            return self._declare(statement)
        raise InterpretError(
            f"Cannot evaluate {statement.__class__.__name__}", kind=InterpretErrorKind.TYPE_MISMATCH
        )

    # ---- leaves ----

    def _primitive(self, token: Token) -> Value:
        keyword = token.keyword
        if keyword is Keyword.TRUE:
            return Value(TYPE_BOOL, True)
        if keyword is Keyword.FALSE:
            return Value(TYPE_BOOL, False)
        if keyword is Keyword.NULL:
            return null()
        if token.category is Category.NUMBER:
            return Value(TYPE_INT, wrap_int(int(token.value, token.kind.value)))
        if token.category is Category.STRING and token.kind is StringKind.QUOTABLE:
            return Value(TYPE_STR, unescape(token.value))
        return Value(TYPE_STR, token.value)

    def _variable(self, token: Token) -> Value:
        binding = self.register.lookup(token.value)
        if binding is None:
            raise InterpretError(
                f"Undeclared variable '{token.value}' at line {token.line}",
                kind=InterpretErrorKind.UNDECLARED_VARIABLE,
                token=token,
            )
        if isinstance(binding, NaslFunction):
            raise InterpretError(
                f"'{token.value}' is a function, not a value", kind=InterpretErrorKind.TYPE_MISMATCH, token=token
            )
        return binding

    def _array(self, statement: Array) -> Value:
        container = self._variable(statement.token)
        if statement.index is None:
            if container.type not in (TYPE_ARRAY, TYPE_DICT):
                raise InterpretError(
                    f"'{statement.token.value}' is not an array", kind=InterpretErrorKind.NOT_AN_ARRAY, token=statement.token
                )
            return container
        return self._index(container, self.resolve(statement.index), statement.token)

    def _index(self, container: Value, index: Value, token: Token) -> Value:
        if container.type == TYPE_ARRAY:
            position = self._to_int(index, token)
            if position < 0 or position >= len(container.value):
                raise InterpretError(
                    f"Index {position} out of range for '{token.value}' of length {len(container.value)}",
                    kind=InterpretErrorKind.INDEX_OUT_OF_RANGE,
                    token=token,
                )
            return container.value[position]
        if container.type == TYPE_DICT:
            return container.value.get(self._to_key(index), null())
        raise InterpretError(
            f"'{token.value}' is not an array", kind=InterpretErrorKind.NOT_AN_ARRAY, token=token
        )

    # ---- operators ----

    def _operator(self, statement: Operator) -> Value:
        category = statement.category
        operands = statement.operands
        token = statement.token
        if len(operands) == 1:
            return self._unary(category, self.resolve(operands[0]), token)
        left_node, right_node = operands
        if category is Category.AMPERSAND_AMPERSAND:
            return Value(TYPE_BOOL, truthy(self.resolve(left_node)) and truthy(self.resolve(right_node)))
        if category is Category.PIPE_PIPE:
            return Value(TYPE_BOOL, truthy(self.resolve(left_node)) or truthy(self.resolve(right_node)))
        if category is Category.X:
            count = self._to_int(self.resolve(right_node), token)
            result = null()
            for _ in range(max(count, 0)):
                result = self.resolve(left_node)
            return result
        return self.binary(category, self.resolve(left_node), self.resolve(right_node), token)

    def _unary(self, category: Category, operand: Value, token: Optional[Token]) -> Value:
        if category is Category.BANG:
            return Value(TYPE_BOOL, not truthy(operand))
        number = self._to_int(operand, token)
        if category is Category.MINUS:
            return Value(TYPE_INT, wrap_int(-number))
        if category is Category.TILDE:
            return Value(TYPE_INT, wrap_int(~number))
        return Value(TYPE_INT, number)

    def binary(self, category: Category, left: Value, right: Value, token: Optional[Token] = None) -> Value:
        if category is Category.PLUS and TYPE_STR in (left.type, right.type):
            return Value(TYPE_STR, self._to_str(left, token) + self._to_str(right, token))
        if category is Category.MINUS and left.type == TYPE_STR:
            return Value(TYPE_STR, left.value.replace(self._to_str(right, token), "", 1))
        if category is Category.EQUAL_EQUAL:
            return Value(TYPE_BOOL, self._values_equal(left, right))
        if category is Category.BANG_EQUAL:
            return Value(TYPE_BOOL, not self._values_equal(left, right))
        if category in _ORDERINGS:
            if left.type == TYPE_STR and right.type == TYPE_STR:
                return Value(TYPE_BOOL, _ORDERINGS[category](left.value, right.value))
            return Value(TYPE_BOOL, _ORDERINGS[category](self._to_int(left, token), self._to_int(right, token)))
        if category in (Category.EQUAL_TILDE, Category.BANG_TILDE):
            pattern = self._to_str(right, token)
            try:
                matched = re.search(pattern, self._to_str(left, token)) is not None
            except re.error as exc:
                raise InterpretError(
                    f"Invalid regular expression '{pattern}': {exc}", kind=InterpretErrorKind.TYPE_MISMATCH, token=token
                ) from exc
            return Value(TYPE_BOOL, matched if category is Category.EQUAL_TILDE else not matched)
        if category in (Category.GREATER_LESS, Category.GREATER_BANG_LESS):
            contained = self._to_str(left, token) in self._to_str(right, token)
            return Value(TYPE_BOOL, contained if category is Category.GREATER_LESS else not contained)

        operation = _INT_OPERATIONS.get(category)
        if operation is None:
            raise InterpretError(
                f"Unsupported operator '{category.value}'", kind=InterpretErrorKind.TYPE_MISMATCH, token=token
            )
        a = self._to_int(left, token)
        b = self._to_int(right, token)
        if b == 0 and category in (Category.SLASH, Category.PERCENT):
            raise InterpretError("Division by zero", kind=InterpretErrorKind.DIVISION_BY_ZERO, token=token)
        if a == 0 and b < 0 and category is Category.STAR_STAR:
            raise InterpretError("Zero raised to a negative power", kind=InterpretErrorKind.DIVISION_BY_ZERO, token=token)
        return Value(TYPE_INT, wrap_int(operation(a, b)))

    def _values_equal(self, left: Value, right: Value) -> bool:
        if left.type == right.type:
            return left.value == right.value
        if left.type in _SCALARS and right.type in _SCALARS:
            if TYPE_STR in (left.type, right.type):
                return to_display(left) == to_display(right)
            return int(left.value or 0) == int(right.value or 0)
        return False

    def _to_int(self, value: Value, token: Optional[Token]) -> int:
        vtype = value.type
        if vtype == TYPE_INT:
            return value.value
        if vtype == TYPE_BOOL:
            return int(value.value)
        if vtype == TYPE_NULL:
            return 0
        if vtype == TYPE_STR and _INTEGER_LITERAL.fullmatch(value.value.strip()):
            return wrap_int(int(value.value.strip()))
        raise InterpretError(
            f"Expected a number but got {vtype}", kind=InterpretErrorKind.TYPE_MISMATCH, token=token
        )

    def _to_str(self, value: Value, token: Optional[Token]) -> str:
        if value.type in _SCALARS:
            return to_display(value)
        raise InterpretError(
            f"Expected a string but got {value.type}", kind=InterpretErrorKind.TYPE_MISMATCH, token=token
        )

    def _to_key(self, index: Value) -> str:
        return to_display(index)

    # ---- assignment ----

    def _assign(self, statement: Assign) -> Value:
        category = statement.category
        target = statement.target
        token = statement.token
        index = self._target_index(target)
        if category is Category.EQUAL:
            value = copy_value(self.resolve(statement.value))
            self._store(target, index, value, declare=True)
            return value
        old = self._load(target, index)
        if category in (Category.PLUS_PLUS, Category.MINUS_MINUS):
            step = 1 if category is Category.PLUS_PLUS else -1
            new = Value(TYPE_INT, wrap_int(self._to_int(old, token) + step))
        else:
            new = self.binary(_COMPOUND_OPERATORS[category], old, self.resolve(statement.value), token)
        self._store(target, index, new, declare=False)
        return new if statement.order is AssignOrder.ASSIGN_RETURN else old

    def _target_index(self, target: Statement) -> Optional[Value]:
        if isinstance(target, Array) and target.index is not None:
            return self.resolve(target.index)
        return None

    def _load(self, target: Statement, index: Optional[Value]) -> Value:
        if isinstance(target, Variable):
            return self._variable(target.token)
        assert isinstance(target, Array)
        if index is None:
            raise InterpretError(
                f"Cannot update '{target.token.value}[]'; only '=' may append",
                kind=InterpretErrorKind.TYPE_MISMATCH,
                token=target.token,
            )
        return self._index(self._variable(target.token), index, target.token)

    def _store(self, target: Statement, index: Optional[Value], value: Value, *, declare: bool) -> None:
        assert isinstance(target, (Variable, Array))
        token = target.token
        name = token.value
        if isinstance(target, Variable):
            if declare:
                self.register.assign(name, value)
            elif not self.register.update(name, value):
                raise InterpretError(
                    f"Undeclared variable '{name}'", kind=InterpretErrorKind.UNDECLARED_VARIABLE, token=token
                )
            return

        binding = self.register.lookup(name)
        if isinstance(binding, NaslFunction):
            raise InterpretError(f"'{name}' is a function, not a value", kind=InterpretErrorKind.TYPE_MISMATCH, token=token)
        if binding is None and not declare:
            raise InterpretError(f"Undeclared variable '{name}'", kind=InterpretErrorKind.UNDECLARED_VARIABLE, token=token)
        if binding is None or binding.type == TYPE_NULL:
            string_key = index is not None and index.type == TYPE_STR and not _INTEGER_LITERAL.fullmatch(index.value)
            binding = Value(TYPE_DICT, {}) if string_key else Value(TYPE_ARRAY, [])
            self.register.assign(name, binding)

        if binding.type == TYPE_ARRAY:
            items = binding.value
            if index is None:
                items.append(value)
                return
            position = self._to_int(index, token)
            if position < 0:
                raise InterpretError(
                    f"Negative index {position} for '{name}'", kind=InterpretErrorKind.INDEX_OUT_OF_RANGE, token=token
                )
            if position >= len(items):
                items.extend(null() for _ in range(position + 1 - len(items)))
            items[position] = value
            return
        if binding.type == TYPE_DICT and index is not None:
            binding.value[self._to_key(index)] = value
            return
        raise InterpretError(f"'{name}' is not an array", kind=InterpretErrorKind.NOT_AN_ARRAY, token=token)

    def _declare(self, statement: Declare) -> Value:
        for item in statement.variables:
            if isinstance(item, Assign):
                name = item.target.token.value
                value = copy_value(self.resolve(item.value))
            else:
                name = item.token.value
                value = null()
            if statement.scope is Keyword.GLOBAL_VAR:
                self.register.declare_global(name, value)
            else:
                self.register.declare(name, value)
        return null()

    # ---- control flow ----

    def _condition(self, statement: Statement) -> bool:
        if isinstance(statement, NoOp):
            return True
        return truthy(self.resolve(statement))

    def _execute_while(self, statement: While) -> Value:
        while truthy(self.resolve(statement.condition)):
            try:
                self.resolve(statement.body)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return null()

    def _execute_repeat(self, statement: Repeat) -> Value:
        while True:
            try:
                self.resolve(statement.body)
            except BreakSignal:
                break
            except ContinueSignal:
                pass
            if truthy(self.resolve(statement.condition)):
                break
        return null()

    def _execute_for(self, statement: For) -> Value:
        self.resolve(statement.init)
        while self._condition(statement.condition):
            try:
                self.resolve(statement.body)
            except BreakSignal:
                break
            except ContinueSignal:
                pass
            self.resolve(statement.update)
        return null()

    def _execute_foreach(self, statement: ForEach) -> Value:
        iterable = self.resolve(statement.iterable)
        if iterable.type == TYPE_ARRAY:
            items = list(iterable.value)
        elif iterable.type == TYPE_DICT:
            items = list(iterable.value.values())
        elif iterable.type == TYPE_NULL:
            items = []
        else:
            raise InterpretError(
                f"foreach expects an array but got {iterable.type}",
                kind=InterpretErrorKind.NOT_AN_ARRAY,
                token=statement.variable,
            )
        name = statement.variable.value
        for item in items:
            self.register.assign(name, copy_value(item))
            try:
                self.resolve(statement.body)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return null()

    def _include(self, statement: Include) -> Value:
        name = self._to_str(self.resolve(statement.value), None)
        logger.debug("include %s", name)
        code = self.context.loader.load(name)
        for parsed in Parser(code, name):
            self.resolve(parsed)
        return null()

    # ---- calls ----

    def _call(self, statement: Call) -> Value:
        token = statement.token
        name = token.value
        named: Dict[str, ContextType] = {}
        positional: List[Value] = []
        for argument in statement.arguments:
            if isinstance(argument, NamedParameter):
                named[argument.token.value] = copy_value(self.resolve(argument.value))
            else:
                positional.append(copy_value(self.resolve(argument)))

        binding = self.register.lookup(name)
        if isinstance(binding, NaslFunction):
            return self._call_user_function(binding, named, positional, token)
        native = self.context.lookup(name)
        if native is None:
            raise InterpretError(
                f"Unknown function '{name}' at line {token.line}", kind=InterpretErrorKind.UNKNOWN_FUNCTION, token=token
            )
        return self._call_native(name, native, named, positional, token)

    def _call_user_function(
        self,
        function: NaslFunction,
        named: Dict[str, ContextType],
        positional: List[Value],
        token: Token,
    ) -> Value:
        bindings: Dict[str, ContextType] = {parameter: null() for parameter in function.parameters}
        bindings.update(named)
        bindings[FC_ANON_ARGS] = Value(TYPE_ARRAY, positional)
        self.call_stack.append(Frame(function.name, token))
        with self.register.scope(bindings):
            try:
                self.resolve(function.body)
            except ReturnSignal as signal:
                result = signal.value
            except (BreakSignal, ContinueSignal) as signal:
                raise InterpretError(
                    f"{'break' if isinstance(signal, BreakSignal) else 'continue'} outside of a loop in '{function.name}'",
                    kind=InterpretErrorKind.INVALID_CONTROL_FLOW,
                    token=signal.token,
                ) from None
            else:
                result = null()
        self.call_stack.pop()
        return result

    def _call_native(
        self,
        name: str,
        native: NativeFunction,
        named: Dict[str, ContextType],
        positional: List[Value],
        token: Token,
    ) -> Value:
        bindings = dict(named)
        bindings[FC_ANON_ARGS] = Value(TYPE_ARRAY, positional)
        with self.register.scope(bindings):
            try:
                result = native(self.register, self.context)
            except FunctionError as error:
                raise InterpretError(
                    f"{name}: {error.message}", kind=InterpretErrorKind.FUNCTION_ERROR, token=token, cause=error
                ) from error
        return result if result is not None else null()


# ---- error formatting ----

_TAXONOMIES = (
    (NASLLexError, "lex"),
    (NASLSyntaxError, "syntax"),
    (InterpretError, "interpret"),
    (FunctionError, "function"),
    (LoadError, "load"),
    (NASLExtensionError, "extension"),
)


class ErrorFormatter:
    def __init__(self, interpreter: Optional[Interpreter] = None, filename: str = "<string>") -> None:
        self.interpreter = interpreter
        self.filename = interpreter.filename if interpreter is not None else filename

    def taxonomy(self, error: NASLError) -> str:
        for cls, name in _TAXONOMIES:
            if isinstance(error, cls):
                return name
        return "internal"

    def _frames(self) -> List[Frame]:
        return list(self.interpreter.call_stack) if self.interpreter is not None else []

    def to_dict(self, error: NASLError) -> Dict[str, Any]:
        kind = getattr(error, "kind", None)
        position = getattr(error, "position", None)
        data: Dict[str, Any] = {
            "taxonomy": self.taxonomy(error),
            "kind": kind.value if kind is not None else None,
            "message": getattr(error, "message", str(error)),
            "position": None,
        }
        if position is not None:
            data["position"] = {
                "file": self.filename,
                "start": position[0],
                "end": position[1],
                "line": getattr(error, "line", None),
                "column": getattr(error, "column", None),
            }
        cause = getattr(error, "cause", None)
        if cause is not None:
            data["cause"] = {"kind": cause.kind.value, "message": cause.message}
        data["traceback"] = [
            {
                "frame_index": index,
                "name": frame.name,
                "line": frame.token.line if frame.token is not None else None,
            }
            for index, frame in enumerate(self._frames())
        ]
        return data

    def to_json(self, error: NASLError) -> str:
        return json.dumps(self.to_dict(error), indent=2)

    def format_text(self, error: NASLError, verbose: bool = False) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self._frames():
            if frame.token is not None:
                lines.append(f"  File \"{self.filename}\", line {frame.token.line}, in {frame.name}")
            else:
                lines.append(f"  File \"{self.filename}\", in {frame.name}")
        line = getattr(error, "line", None)
        if line is not None:
            lines.append(f"  File \"{self.filename}\", line {line}, column {getattr(error, 'column', None)}")
        if verbose and self.interpreter is not None:
            snapshot = ", ".join(f"{k}={v}" for k, v in self.interpreter.register.snapshot().items())
            lines.append(f"    Register snapshot: {snapshot}")
        kind = getattr(error, "kind", None)
        label = kind.value if kind is not None else self.taxonomy(error)
        lines.append(f"{error.__class__.__name__}: {getattr(error, 'message', str(error))} (kind: {label})")
        return "\n".join(lines)
