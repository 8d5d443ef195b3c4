from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union


class NASLError(Exception):
    """Base class for interpreter errors."""


class LexErrorKind(enum.Enum):
    UNKNOWN_SYMBOL = "unknown_symbol"
    UNCLOSED_STRING = "unclosed_string"
    UNCLOSED_COMMENT = "unclosed_comment"
    INVALID_NUMBER = "invalid_number"


class NASLLexError(NASLError):
    """Raised when the input matches no token category."""

    def __init__(
        self,
        message: str,
        *,
        kind: LexErrorKind,
        position: Tuple[int, int],
        line: int,
        column: int,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.position = position
        self.line = line
        self.column = column


class Category(enum.Enum):
    # grouping and punctuation
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"
    LEFT_BRACE = "{"
    RIGHT_BRACE = "}"
    LEFT_BRACKET = "["
    RIGHT_BRACKET = "]"
    COMMA = ","
    DOT = "."
    COLON = ":"
    SEMICOLON = ";"
    # operators
    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    STAR_STAR = "**"
    SLASH = "/"
    PERCENT = "%"
    TILDE = "~"
    BANG = "!"
    AMPERSAND = "&"
    AMPERSAND_AMPERSAND = "&&"
    PIPE = "|"
    PIPE_PIPE = "||"
    CARET = "^"
    LESS = "<"
    LESS_EQUAL = "<="
    LESS_LESS = "<<"
    GREATER = ">"
    GREATER_EQUAL = ">="
    GREATER_GREATER = ">>"
    GREATER_GREATER_GREATER = ">>>"
    EQUAL_EQUAL = "=="
    BANG_EQUAL = "!="
    EQUAL_TILDE = "=~"
    BANG_TILDE = "!~"
    GREATER_LESS = "><"
    GREATER_BANG_LESS = ">!<"
    X = "x"
    # assignment
    EQUAL = "="
    PLUS_EQUAL = "+="
    MINUS_EQUAL = "-="
    STAR_EQUAL = "*="
    SLASH_EQUAL = "/="
    PERCENT_EQUAL = "%="
    LESS_LESS_EQUAL = "<<="
    GREATER_GREATER_EQUAL = ">>="
    GREATER_GREATER_GREATER_EQUAL = ">>>="
    PLUS_PLUS = "++"
    MINUS_MINUS = "--"
    # literals and names
    STRING = "string"
    NUMBER = "number"
    IPV4 = "ipv4"
    IDENTIFIER = "identifier"
    COMMENT = "comment"


class StringKind(enum.Enum):
    QUOTABLE = "'"
    UNQUOTABLE = '"'


class Base(enum.Enum):
    BASE2 = 2
    BASE8 = 8
    BASE10 = 10
    BASE16 = 16


class Keyword(enum.Enum):
    IF = "if"
    ELSE = "else"
    FOR = "for"
    FOREACH = "foreach"
    WHILE = "while"
    REPEAT = "repeat"
    UNTIL = "until"
    FUNCTION = "function"
    RETURN = "return"
    BREAK = "break"
    CONTINUE = "continue"
    INCLUDE = "include"
    EXIT = "exit"
    LOCAL_VAR = "local_var"
    GLOBAL_VAR = "global_var"
    TRUE = "TRUE"
    FALSE = "FALSE"
    NULL = "NULL"


KEYWORDS = {keyword.value: keyword for keyword in Keyword}

TokenKind = Union[StringKind, Base, Keyword, None]


@dataclass(frozen=True)
class Token:
    category: Category
    position: Tuple[int, int]
    value: str
    line: int
    column: int
    kind: TokenKind = None

    @property
    def keyword(self) -> Optional[Keyword]:
        return self.kind if isinstance(self.kind, Keyword) else None


SYMBOLS = {
    "(": Category.LEFT_PAREN,
    ")": Category.RIGHT_PAREN,
    "{": Category.LEFT_BRACE,
    "}": Category.RIGHT_BRACE,
    "[": Category.LEFT_BRACKET,
    "]": Category.RIGHT_BRACKET,
    ",": Category.COMMA,
    ".": Category.DOT,
    ":": Category.COLON,
    ";": Category.SEMICOLON,
}

# Longest match wins, so each length is tried from four characters down to one.
OPERATORS = {
    ">>>=": Category.GREATER_GREATER_GREATER_EQUAL,
    ">>>": Category.GREATER_GREATER_GREATER,
    ">>=": Category.GREATER_GREATER_EQUAL,
    "<<=": Category.LESS_LESS_EQUAL,
    ">!<": Category.GREATER_BANG_LESS,
    "**": Category.STAR_STAR,
    "++": Category.PLUS_PLUS,
    "--": Category.MINUS_MINUS,
    "+=": Category.PLUS_EQUAL,
    "-=": Category.MINUS_EQUAL,
    "*=": Category.STAR_EQUAL,
    "/=": Category.SLASH_EQUAL,
    "%=": Category.PERCENT_EQUAL,
    "==": Category.EQUAL_EQUAL,
    "!=": Category.BANG_EQUAL,
    "<=": Category.LESS_EQUAL,
    ">=": Category.GREATER_EQUAL,
    "<<": Category.LESS_LESS,
    ">>": Category.GREATER_GREATER,
    "&&": Category.AMPERSAND_AMPERSAND,
    "||": Category.PIPE_PIPE,
    "=~": Category.EQUAL_TILDE,
    "!~": Category.BANG_TILDE,
    "><": Category.GREATER_LESS,
    "+": Category.PLUS,
    "-": Category.MINUS,
    "*": Category.STAR,
    "/": Category.SLASH,
    "%": Category.PERCENT,
    "~": Category.TILDE,
    "!": Category.BANG,
    "&": Category.AMPERSAND,
    "|": Category.PIPE,
    "^": Category.CARET,
    "<": Category.LESS,
    ">": Category.GREATER,
    "=": Category.EQUAL,
}

_DIGITS = {
    Base.BASE2: "01",
    Base.BASE8: "01234567",
    Base.BASE10: "0123456789",
    Base.BASE16: "0123456789abcdefABCDEF",
}


class Lexer:
    """Cursor over the source text; each call to next_token advances it."""

    def __init__(self, text: str, filename: str = "<string>", start: int = 0) -> None:
        self.text = text
        self.filename = filename
        self.index = start
        # Recover line/column for cursors that resume mid-text.
        self.line = text.count("\n", 0, start) + 1
        self.column = start - (text.rfind("\n", 0, start) + 1) + 1

    def next_token(self) -> Optional[Token]:
        text = self.text
        n = len(text)
        _advance = self._advance

        while self.index < n and text[self.index] in " \t\r\n":
            _advance()
        if self.index >= n:
            return None

        ch = text[self.index]
        if ch == "#":
            return self._consume_line_comment()
        if ch == "/" and text.startswith("/*", self.index):
            return self._consume_block_comment()
        if ch in SYMBOLS:
            return self._emit(SYMBOLS[ch], 1)
        if ch in ('"', "'"):
            return self._consume_string()
        if ch in _DIGITS[Base.BASE10]:
            return self._consume_number()
        if self._is_identifier_start(ch):
            return self._consume_identifier()
        for width in (4, 3, 2, 1):
            category = OPERATORS.get(text[self.index:self.index + width])
            if category is not None:
                return self._emit(category, width)
        start, line, col = self.index, self.line, self.column
        _advance()
        raise NASLLexError(
            f"Unexpected character '{ch}' at {self.filename}:{line}:{col}",
            kind=LexErrorKind.UNKNOWN_SYMBOL,
            position=(start, self.index),
            line=line,
            column=col,
        )

    def _emit(self, category: Category, width: int, kind: TokenKind = None) -> Token:
        start, line, col = self.index, self.line, self.column
        for _ in range(width):
            self._advance()
        return Token(category, (start, self.index), self.text[start:self.index], line, col, kind)

    def _consume_line_comment(self) -> Token:
        start, line, col = self.index, self.line, self.column
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()
        return Token(Category.COMMENT, (start, self.index), text[start:self.index], line, col)

    def _consume_block_comment(self) -> Token:
        start, line, col = self.index, self.line, self.column
        end = self.text.find("*/", start + 2)
        if end == -1:
            while not self._eof:
                self._advance()
            raise NASLLexError(
                f"Unterminated comment at {self.filename}:{line}:{col}",
                kind=LexErrorKind.UNCLOSED_COMMENT,
                position=(start, self.index),
                line=line,
                column=col,
            )
        while self.index < end + 2:
            self._advance()
        return Token(Category.COMMENT, (start, self.index), self.text[start:self.index], line, col)

    def _consume_string(self) -> Token:
        start, line, col = self.index, self.line, self.column
        opening = self._peek()
        kind = StringKind.QUOTABLE if opening == "'" else StringKind.UNQUOTABLE
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == opening:
                self._advance()
                return Token(Category.STRING, (start, self.index), "".join(chars), line, col, kind)
            # Escapes stay in the lexeme; only the closing quote needs guarding.
            if ch == "\\" and kind is StringKind.QUOTABLE and self.index + 1 < len(self.text):
                chars.append(ch)
                self._advance()
                ch = self._peek()
            chars.append(ch)
            self._advance()
        raise NASLLexError(
            f"Unterminated string literal at {self.filename}:{line}:{col}",
            kind=LexErrorKind.UNCLOSED_STRING,
            position=(start, self.index),
            line=line,
            column=col,
        )

    def _consume_number(self) -> Token:
        start, line, col = self.index, self.line, self.column
        text = self.text
        base = Base.BASE10
        prefix = text[self.index:self.index + 2].lower()
        if prefix in ("0x", "0b"):
            base = Base.BASE16 if prefix == "0x" else Base.BASE2
            self._advance()
            self._advance()
        elif text[self.index] == "0" and self.index + 1 < len(text) and text[self.index + 1] in _DIGITS[Base.BASE10]:
            base = Base.BASE8
            self._advance()
        digits = self._consume_while(_DIGITS[Base.BASE16] if base is Base.BASE16 else _DIGITS[Base.BASE10])

        if base is Base.BASE10 and self._looks_like_ipv4(digits):
            for _ in range(3):
                self._advance()  # consume '.'
                self._consume_while(_DIGITS[Base.BASE10])
            return Token(Category.IPV4, (start, self.index), text[start:self.index], line, col)

        if base is Base.BASE8 and self._peek_optional() == ".":
            # Leading zeros inside a dotted quad such as 010.0.0.1.
            digits = "0" + digits
            if self._looks_like_ipv4(digits):
                for _ in range(3):
                    self._advance()
                    self._consume_while(_DIGITS[Base.BASE10])
                return Token(Category.IPV4, (start, self.index), text[start:self.index], line, col)

        if digits == "" or any(ch not in _DIGITS[base] for ch in digits):
            raise NASLLexError(
                f"Invalid base {base.value} number '{text[start:self.index]}' at {self.filename}:{line}:{col}",
                kind=LexErrorKind.INVALID_NUMBER,
                position=(start, self.index),
                line=line,
                column=col,
            )
        return Token(Category.NUMBER, (start, self.index), digits, line, col, base)

    def _looks_like_ipv4(self, first: str) -> bool:
        if not first:
            return False
        text = self.text
        i = self.index
        n = len(text)
        for _ in range(3):
            if i >= n or text[i] != ".":
                return False
            i += 1
            begin = i
            while i < n and text[i] in _DIGITS[Base.BASE10]:
                i += 1
            if i == begin:
                return False
        return True

    def _consume_identifier(self) -> Token:
        start, line, col = self.index, self.line, self.column
        value = self._consume_while(None)
        keyword = KEYWORDS.get(value)
        return Token(Category.IDENTIFIER, (start, self.index), value, line, col, keyword)

    def _consume_while(self, allowed: Optional[str]) -> str:
        """Consume a run of characters; identifier characters when allowed is None."""
        text = self.text
        n = len(text)
        begin = self.index
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if allowed is None:
                if not self._is_identifier_part(ch):
                    break
            elif ch not in allowed:
                break
            _advance()
        return text[begin:self.index]

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ch.isalpha()

    def _is_identifier_part(self, ch: str) -> bool:
        return ch == "_" or ch.isalnum()

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_optional(self) -> Optional[str]:
        return None if self._eof else self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


class Tokenizer:
    """Lazy, restartable token sequence over a script.

    Every iteration starts a fresh Lexer, so walking the same text twice
    produces the same tokens and leaves no state behind.
    """

    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename

    def __iter__(self) -> Iterator[Token]:
        return self.tokens()

    def tokens(self, start: int = 0) -> Iterator[Token]:
        lexer = Lexer(self.text, self.filename, start)
        while True:
            token = lexer.next_token()
            if token is None:
                return
            yield token
