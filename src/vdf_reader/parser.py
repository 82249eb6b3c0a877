"""Converts tokens into a stream of structural events.

The parser does not build a tree. Each call to :py:meth:`EventParser.next_event()` reads just
enough tokens to produce one of the following:

* :py:class:`EnterBlock` for ``"key" {``,
* :py:class:`Scalar` for ``"key" "value"``,
* :py:class:`LeaveBlock` for ``}``.

The top level of a file is an implicit block, which is only closed by the end of the text.
Keys and values written with a leading ``#`` (like ``#base "file.res"``) are produced as
:py:class:`Statement` strings, so they can be told apart from ordinary text.
Keys are never checked for uniqueness here, that is up to the consumer of the events.
"""
from typing import Iterable, Iterator, Optional, Protocol, Union
from typing_extensions import Self, TypeAlias

import attrs

from vdf_reader import StringPath
from vdf_reader.tokenizer import Position, Token, Tokenizer, TokenSyntaxError


__all__ = [
    'StructuralError', 'UnbalancedBracesError', 'UnexpectedEOFError', 'UnexpectedTokenError',
    'EnterBlock', 'LeaveBlock', 'Scalar', 'Event', 'Statement',
    'EventSource', 'EventParser', 'ReplayEvents',
]


class StructuralError(TokenSyntaxError):
    """Base class for errors in the nesting of blocks."""


class UnbalancedBracesError(StructuralError):
    """A ``}`` was found which does not close any block."""


class UnexpectedEOFError(StructuralError):
    """The text ended in the middle of a block or an entry, or a block was read past its end."""


class UnexpectedTokenError(StructuralError):
    """A token was found in a place where it cannot be used."""


class Statement(str):
    """A ``#`` directive like ``#include`` or ``#base``, or a value starting with ``#``.

    This behaves exactly like the plain string, and compares equal to it.
    """
    __slots__ = ()

    def __repr__(self) -> str:
        return f'Statement({str.__repr__(self)})'

    @property
    def name(self) -> str:
        """The text after the ``#``."""
        return self[1:]


@attrs.frozen
class EnterBlock:
    """A block with the given name is starting."""
    key: str
    pos: Optional[Position] = attrs.field(default=None, eq=False)


@attrs.frozen
class LeaveBlock:
    """The innermost open block has ended."""
    pos: Optional[Position] = attrs.field(default=None, eq=False)


@attrs.frozen
class Scalar:
    """A key with a single string value."""
    key: str
    value: str
    pos: Optional[Position] = attrs.field(default=None, eq=False)


Event: TypeAlias = Union[EnterBlock, LeaveBlock, Scalar]


class EventSource(Protocol):
    """Anything which can produce events for a :py:class:`~vdf_reader.cursor.Cursor`."""
    filename: Optional[str]

    @property
    def depth(self) -> int:
        """The number of blocks currently open."""
        ...

    def next_event(self) -> Optional[Event]:
        """Produce the next event, or None at the end of the data."""
        ...

    def skip_block(self) -> None:
        """Discard everything up to and including the end of the innermost open block."""
        ...


class EventParser:
    """Reads tokens, producing events one at a time."""
    tokenizer: Tokenizer
    #: The number of blocks currently open.
    depth: int

    def __init__(self, tokenizer: Tokenizer) -> None:
        self.tokenizer = tokenizer
        self.depth = 0

    @classmethod
    def from_str(
        cls,
        data: Union[str, Iterable[str]],
        filename: Optional[StringPath] = None,
        *,
        strict_escapes: bool = False,
    ) -> Self:
        """Create a parser reading from the given text."""
        return cls(Tokenizer(data, filename, strict_escapes=strict_escapes))

    @property
    def filename(self) -> Optional[str]:
        """The filename of the text being parsed."""
        return self.tokenizer.filename

    def __repr__(self) -> str:
        return f'<EventParser {self.tokenizer.filename!r}, depth={self.depth}>'

    def __iter__(self) -> Iterator[Event]:
        """Iterate over all remaining events."""
        while (event := self.next_event()) is not None:
            yield event

    def next_event(self) -> Optional[Event]:
        """Read the next event, or return None at the end of the text."""
        tokenizer = self.tokenizer
        key_type, key = tokenizer()
        if key_type.is_statement:
            key = Statement(key)
        key_pos = tokenizer.pos

        if key_type is Token.BRACE_CLOSE:
            if self.depth == 0:
                raise tokenizer.error(
                    UnbalancedBracesError,
                    'Too many closing brackets.\n\n'
                    'An extra closing bracket was added which would '
                    'close the outermost level.',
                )
            self.depth -= 1
            return LeaveBlock(key_pos)
        elif key_type is Token.EOF:
            if self.depth > 0:
                raise tokenizer.error(
                    UnexpectedEOFError,
                    'End of text reached with {} remaining open block{}.',
                    self.depth, '' if self.depth == 1 else 's',
                )
            return None
        elif key_type is Token.BRACE_OPEN:
            raise tokenizer.error(
                UnexpectedTokenError,
                'Block opening ("{") found without a name!',
            )

        # A key, the next token determines what kind of entry this is.
        value_type, value = tokenizer()
        if value_type is Token.BRACE_OPEN:
            self.depth += 1
            return EnterBlock(key, key_pos)
        elif value_type.has_value:
            if value_type.is_statement:
                value = Statement(value)
            return Scalar(key, value, key_pos)
        elif value_type is Token.EOF:
            raise tokenizer.error(
                UnexpectedEOFError,
                'Key "{}" has no value, but hit the end of the text!', key,
            )
        else:
            raise tokenizer.error(
                UnexpectedTokenError,
                'Key "{}" has no value before the closing bracket!', key,
            )

    def skip_block(self) -> None:
        """Discard tokens up to and including the ``}`` closing the innermost open block.

        Only braces are interpreted, so this is much cheaper than reading events.
        """
        if self.depth == 0:
            raise ValueError('No block is open!')
        tokenizer = self.tokenizer
        level = 1
        while True:
            tok, _ = tokenizer()
            if tok is Token.BRACE_OPEN:
                level += 1
            elif tok is Token.BRACE_CLOSE:
                level -= 1
                if level == 0:
                    self.depth -= 1
                    return
            elif tok is Token.EOF:
                raise tokenizer.error(
                    UnexpectedEOFError,
                    'End of text reached with {} remaining open block{}.',
                    self.depth + level - 1, '' if self.depth + level - 1 == 1 else 's',
                )


class ReplayEvents:
    """Produces events from an existing sequence, like those from :py:meth:`Block.events()`.

    This allows cursors and deserialisation to run over already-parsed data.
    """
    filename: Optional[str]
    depth: int
    _events: Iterator[Event]

    def __init__(self, events: Iterable[Event], filename: Optional[str] = None) -> None:
        self._events = iter(events)
        self.filename = filename
        self.depth = 0

    def next_event(self) -> Optional[Event]:
        """Produce the next event, checking that blocks are balanced."""
        event = next(self._events, None)
        if isinstance(event, EnterBlock):
            self.depth += 1
        elif isinstance(event, LeaveBlock):
            if self.depth == 0:
                raise _event_error(UnbalancedBracesError, 'Too many block endings!', event, self.filename)
            self.depth -= 1
        elif event is None and self.depth > 0:
            raise UnexpectedEOFError(
                f'Events ended with {self.depth} remaining open blocks.',
                self.filename,
            )
        return event

    def skip_block(self) -> None:
        """Discard events up to and including the end of the innermost block."""
        if self.depth == 0:
            raise ValueError('No block is open!')
        target = self.depth - 1
        while self.depth > target:
            self.next_event()


def _event_error(
    kind: type, message: str,
    event: Event, filename: Optional[str],
) -> TokenSyntaxError:
    """Produce an error located at this event."""
    if event.pos is None:
        return kind(message, filename)
    return kind(message, filename, event.pos.line, event.pos.column)

