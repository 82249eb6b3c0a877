"""Splits VDF text into tokens.

The :py:class:`Tokenizer` takes a full string, or an iterable of strings (like an open text file)
and produces ``(Token, value)`` pairs. Whitespace and ``//`` comments are consumed here and never
produce tokens. Quoted strings are unescaped eagerly, so the value of a :py:const:`Token.QUOTED`
token is the final text.

Text starting with ``#`` produces :py:const:`Token.STATEMENT` or :py:const:`Token.QUOTED_STATEMENT`
instead, for directives like ``#base`` and ``#include``.

One token of lookahead is supported, accessed by the :py:func:`Tokenizer.peek()` and
:py:func:`Tokenizer.push_back()` methods. The tokenizer tracks the line and column of each token
as data is read, letting you ``raise tokenizer.error(...)`` to produce an exception listing the
relevant position and filename.

Only ``\\"`` and ``\\\\`` are treated as escapes inside quoted strings. Other backslashes are kept
as-is, since Valve's files frequently contain unescaped Windows paths. Pass ``strict_escapes=True``
to reject them instead.
"""
from typing import Final, Iterable, Iterator, List, NoReturn, Optional, Tuple, Type, TypeVar, Union
from typing_extensions import Self
from enum import Enum
from os import fspath as _conv_path

import attrs

from vdf_reader import StringPath


__all__ = [
    'TokenSyntaxError', 'LexError',
    'UnterminatedStringError', 'InvalidEscapeError', 'InvalidCharacterError',
    'Position', 'Token', 'Tokenizer', 'format_exc_fileinfo',
]


@attrs.frozen
class Position:
    """A location in the source text. Both values start at 1."""
    line: int
    column: int

    def __str__(self) -> str:
        return f'{self.line}:{self.column}'


def format_exc_fileinfo(
    msg: str,
    file: Optional[StringPath],
    line_num: Optional[int],
    column: Optional[int] = None,
) -> str:
    """If a line number or file is provided, include those in the error message."""
    if file is None and line_num is None:
        return msg
    parts = [msg]
    if line_num is not None:
        if column is not None:
            parts.append(f'\nError occurred on line {line_num}, column {column}')
        else:
            parts.append(f'\nError occurred on line {line_num}')
        if file is not None:
            parts.append(f', with file "{file}".')
        else:
            parts.append('.')
    elif file is not None:
        parts.append(f'\nError occurred with file "{file}".')
    else:
        # We checked for both being none above!
        raise AssertionError((msg, file, line_num))
    return ''.join(parts)


class TokenSyntaxError(Exception):
    """An error that occurred when parsing a file.

    Every error raised by this package derives from this. Normally it is created via
    :py:func:`Tokenizer.error()` which fills in the filename and position.

    The string representation will include the provided file and position if present.
    """
    mess: str
    """The error message that occurred."""
    file: Optional[StringPath]
    """The filename of the file being parsed, or ``None`` if not known."""
    line_num: Optional[int]
    """The line where the error occurred, or ``None`` if not applicable."""
    column: Optional[int]
    """The column where the error occurred, or ``None`` if not applicable."""

    def __init__(
        self,
        message: str,
        file: Optional[StringPath] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.mess = message
        self.file = file
        self.line_num = line
        self.column = column

    @property
    def pos(self) -> Optional[Position]:
        """The position as a single value, if both parts are known."""
        if self.line_num is None or self.column is None:
            return None
        return Position(self.line_num, self.column)

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}({self.mess!r}, {self.file!r}, '
            f'{self.line_num!r}, {self.column!r})'
        )

    # This is mutable.
    __hash__ = None  # type: ignore[assignment]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TokenSyntaxError):
            return (
                type(self) is type(other) and
                self.mess == other.mess and
                self.file == other.file and
                self.line_num == other.line_num and
                self.column == other.column
            )
        return NotImplemented

    def __str__(self) -> str:
        """Generate the complete error message.

        This includes the position and file, if available.
        """
        return format_exc_fileinfo(self.mess, self.file, self.line_num, self.column)


class LexError(TokenSyntaxError):
    """Base class for errors produced while splitting text into tokens."""


class UnterminatedStringError(LexError):
    """A quoted string was still open when the input ended."""


class InvalidEscapeError(LexError):
    """An unknown backslash escape was found, with ``strict_escapes`` enabled."""


class InvalidCharacterError(LexError):
    """A character which cannot appear outside quotes was found."""


ErrorT = TypeVar('ErrorT', bound=TokenSyntaxError)


class Token(Enum):
    """A token type produced by the tokenizer."""
    EOF = 0  #: Produced indefinitely after the end of the file is reached.
    STRING = 1  #: Unquoted, bare text.
    QUOTED = 2  #: Text in double quotes, with escapes already decoded.
    BRACE_OPEN = 3  #: A ``{`` character.
    BRACE_CLOSE = 4  #: A ``}`` character.
    STATEMENT = 5  #: Unquoted text starting with ``#``, like ``#include``.
    QUOTED_STATEMENT = 6  #: Quoted text starting with ``#``.

    @property
    def has_value(self) -> bool:
        """If true, this type has an associated value."""
        return self not in _OPERATOR_VALS

    @property
    def is_statement(self) -> bool:
        """If true, this is a ``#`` directive, quoted or not."""
        return self is Token.STATEMENT or self is Token.QUOTED_STATEMENT


_OPERATOR_VALS = {
    Token.EOF: '',
    Token.BRACE_OPEN: '{',
    Token.BRACE_CLOSE: '}',
}

_OPERATORS = {
    '{': Token.BRACE_OPEN,
    '}': Token.BRACE_CLOSE,
}

ESCAPES: Final = {
    '"': '"',
    '\\': '\\',
}

WHITESPACE: Final = frozenset(' \t\r\n\f\v')
#: Characters which end a bare string. ``//`` also ends one, but that needs two characters.
BARE_DISALLOWED: Final = frozenset('{}') | WHITESPACE
BOM: Final = '\ufeff'


def _is_control(char: str) -> bool:
    """Control characters aren't permitted outside quotes, apart from whitespace."""
    return (char < ' ' or char == '\x7f') and char not in WHITESPACE


class Tokenizer:
    """Processes text data into groups of tokens.

    This mainly groups strings and removes comments.
    """
    filename: Optional[str]
    """The filename that is being parsed. This is passed along to errors."""
    pos: Position
    """The position of the start of the last token produced."""
    strict_escapes: bool
    """If set, unknown backslash escapes in quoted strings are an error."""

    _chunk_iter: Iterator[str]
    _cur_chunk: str
    _char_index: int
    #: The position of the next character to be read, and the one before that.
    _line: int
    _col: int
    _prev_line: int
    _prev_col: int
    #: If set, these tokens will be returned next.
    _pushback: List[Tuple[Token, str, Position]]

    def __init__(
        self,
        data: Union[str, Iterable[str]],
        filename: Optional[StringPath] = None,
        *,
        strict_escapes: bool = False,
    ) -> None:
        # If a file-like object, automatically use the configured name.
        if filename is None and hasattr(data, 'name'):
            filename = data.name  # pyright: ignore - Can't handle hasattr()

        if filename is not None:
            self.filename = _conv_path(filename)
            if isinstance(self.filename, bytes):
                # We only use this for display, so if bytes convert.
                # Call repr() then strip the b'', so we get the
                # automatic escaping of unprintable characters.
                self.filename = repr(self.filename)[2:-1]
        else:
            self.filename = None

        # Catch passing direct bytes far in advance.
        if isinstance(data, (bytes, bytearray)):
            raise TypeError(
                'Cannot parse binary data! Decode to the desired encoding, '
                'or wrap in io.TextIOWrapper() to decode gradually.'
            )

        # If it's a literal string, there's no point iterating over that.
        # So just keep it as a single chunk, and set the iterator to immediately quit.
        if isinstance(data, str):
            self._cur_chunk = data
            self._chunk_iter = iter(())
        else:
            self._cur_chunk = ''
            self._chunk_iter = iter(data)
        self._char_index = -1

        self.strict_escapes = bool(strict_escapes)
        self._pushback = []
        self._line = self._prev_line = 1
        self._col = self._prev_col = 1
        self.pos = Position(1, 1)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.filename!r} @ {self.pos}>'

    def __reduce__(self) -> NoReturn:
        """Disallow pickling Tokenizers.

        The files themselves usually are not pickleable, or are very large strings.
        """
        raise TypeError('Cannot pickle Tokenizers!')

    def error(
        self,
        kind: Type[ErrorT],
        message: str,
        *args: object,
        pos: Optional[Position] = None,
    ) -> ErrorT:
        """Build a syntax error exception, for the caller to raise.

        The message will be `{}-formatted`_ with the positional args if they are present.
        The filename and the position (of the last token, unless ``pos`` is given) are filled in.

        .. _{}-formatted: https://docs.python.org/3/library/string.html#formatstrings
        """
        if args:
            message = message.format(*args)
        if pos is None:
            pos = self.pos
        return kind(message, self.filename, pos.line, pos.column)

    def __call__(self) -> Tuple[Token, str]:
        """Compute and fetch the next token."""
        if self._pushback:
            tok, value, self.pos = self._pushback.pop()
            return tok, value
        return self._get_token()

    def __iter__(self) -> Self:
        """Tokenizers are their own iterator."""
        return self

    def __next__(self) -> Tuple[Token, str]:
        """Iterate to produce a token, stopping at EOF."""
        tok_and_val = self()
        if tok_and_val[0] is Token.EOF:
            raise StopIteration
        return tok_and_val

    def push_back(self, tok: Token, value: Optional[str] = None, pos: Optional[Position] = None) -> None:
        """Return a token, so it will be reproduced when called again.

        The value is required for string and statement tokens, but ignored for other token
        types. The position defaults to that of the last token.
        """
        if not isinstance(tok, Token):
            raise ValueError(repr(tok) + ' is not a Token!')

        try:
            value = _OPERATOR_VALS[tok]
        except KeyError:
            if value is None:
                raise ValueError(f'Value required for {tok.name!r}!') from None

        self._pushback.append((tok, value, self.pos if pos is None else pos))

    def peek(self) -> Tuple[Token, str]:
        """Peek at the next token, without removing it from the stream."""
        tok, value = self()
        self._pushback.append((tok, value, self.pos))
        return tok, value

    def _next_char(self) -> Optional[str]:
        """Return the next character, or None if no more characters are there."""
        self._char_index += 1
        try:
            char = self._cur_chunk[self._char_index]
        except IndexError:
            # Retrieve a chunk from the iterable, skipping empty ones.
            for chunk in self._chunk_iter:
                if isinstance(chunk, (bytes, bytearray)):
                    raise TypeError('Cannot parse binary data!')
                if not isinstance(chunk, str):
                    raise TypeError('Data was not a string!')
                if chunk:
                    self._cur_chunk = chunk
                    self._char_index = 0
                    char = chunk[0]
                    break
            else:
                # Out of characters. Keep the index at the end, so we keep hitting this.
                self._char_index = len(self._cur_chunk)
                return None

        self._prev_line = self._line
        self._prev_col = self._col
        if char == '\n':
            self._line += 1
            self._col = 1
        else:
            self._col += 1
        return char

    def _unread(self) -> None:
        """Step back over the character just read, so it is produced again."""
        self._char_index -= 1
        self._line = self._prev_line
        self._col = self._prev_col

    def _char_pos(self) -> Position:
        """The position of the character just read."""
        return Position(self._prev_line, self._prev_col)

    def _get_token(self) -> Tuple[Token, str]:
        """Return the next token, value pair."""
        while True:
            next_char = self._next_char()
            if next_char is None:
                self.pos = Position(self._line, self._col)
                return Token.EOF, ''
            self.pos = self._char_pos()

            try:
                return _OPERATORS[next_char], next_char
            except KeyError:
                pass

            if next_char in WHITESPACE:
                continue
            elif next_char == '"':
                value = self._handle_string()
                if value.startswith('#'):
                    return Token.QUOTED_STATEMENT, value
                return Token.QUOTED, value
            elif next_char == '/':
                comment_next = self._next_char()
                if comment_next == '/':
                    self._skip_comment()
                    continue
                # A lone slash is just text.
                if comment_next is not None:
                    self._unread()
                return Token.STRING, self._handle_bare('/')
            elif next_char == BOM:
                # Ignore the Unicode Byte Order Mark at the start only.
                if self.pos == Position(1, 1):
                    continue
                raise self.error(InvalidCharacterError, 'Unexpected byte order mark!')
            elif _is_control(next_char):
                raise self.error(
                    InvalidCharacterError,
                    'Unexpected control character {!r}!', next_char,
                )
            elif next_char == '#':
                value = self._handle_bare(next_char)
                # A lone hash is just text.
                return (Token.STATEMENT if len(value) > 1 else Token.STRING), value
            else:
                return Token.STRING, self._handle_bare(next_char)

    def _skip_comment(self) -> None:
        """Skip to the end of the line. The last two characters read were the slashes."""
        while True:
            next_char = self._next_char()
            if next_char == '\n' or next_char is None:
                return

    def _handle_bare(self, first: str) -> str:
        """Handle an unquoted string. The first character has already been read."""
        value_chars = [first]
        while True:
            next_char = self._next_char()
            if next_char is None:
                # Bare names at the end are actually fine.
                # It could be a value for the last key.
                return ''.join(value_chars)
            elif next_char in BARE_DISALLOWED:
                # We need to repeat this, so we return the ending char next.
                self._unread()
                return ''.join(value_chars)
            elif next_char == '/':
                comment_next = self._next_char()
                if comment_next == '/':
                    # The comment ends the string, the rest of the line is irrelevant.
                    self._skip_comment()
                    return ''.join(value_chars)
                value_chars.append('/')
                if comment_next is None:
                    return ''.join(value_chars)
                self._unread()
            elif _is_control(next_char) or next_char == BOM:
                raise self.error(
                    InvalidCharacterError,
                    'Unexpected control character {!r}!', next_char,
                    pos=self._char_pos(),
                )
            else:
                value_chars.append(next_char)

    def _handle_string(self) -> str:
        """Handle a quoted string definition. The last character was a quote."""
        value_chars: List[str] = []
        while True:
            next_char = self._next_char()
            if next_char == '"':
                return ''.join(value_chars)
            elif next_char is None:
                raise self.error(UnterminatedStringError, 'Unterminated string!')
            elif next_char == '\\':
                escape_pos = self._char_pos()
                escape = self._next_char()
                if escape is None:
                    raise self.error(UnterminatedStringError, 'Unterminated string!')
                try:
                    value_chars.append(ESCAPES[escape])
                except KeyError:
                    if self.strict_escapes:
                        raise self.error(
                            InvalidEscapeError,
                            'Unknown escape "\\{}"!', escape,
                            pos=escape_pos,
                        ) from None
                    # Keep the backslash, then reparse the character. That way "\" stops the string.
                    value_chars.append('\\')
                    self._unread()
            else:
                value_chars.append(next_char)
