"""A pull-based view over the event stream, allowing partial traversal of a file.

A :py:class:`Cursor` is positioned before an entry in a block. The key of that entry can be
inspected with :py:meth:`~Cursor.peek_key()`, then the entry is consumed by reading the value,
entering the block, or skipping it entirely. Nothing is kept once consumed, so huge files can be
read without building a tree, and skipped blocks are only scanned for braces::

    >>> cursor = Cursor.from_str('''
    ... "Settings" { "volume" "0.5" "binds" { "w" "+forward" } }
    ... ''')
    >>> cursor.peek_key()
    'Settings'
    >>> with cursor.enter() as settings:
    ...     settings.read_entry()
    ('volume', '0.5')
    >>> cursor.peek_key() is None
    True

Child cursors borrow the stream of their parent. While a child is open, the parent cannot be
used. Leave the ``with`` block (or call :py:meth:`~Cursor.finish()`) first.
"""
from typing import Iterable, Iterator, Optional, Tuple, Type, Union
from typing_extensions import Self
from types import TracebackType

import attrs

from vdf_reader import StringPath
from vdf_reader.parser import (
    EnterBlock, Event, EventParser, EventSource, LeaveBlock, ReplayEvents, Scalar,
    UnexpectedEOFError,
)
from vdf_reader.tokenizer import Position, TokenSyntaxError


__all__ = ['Cursor', 'DeserializeError', 'TypeMismatchError']


class DeserializeError(TokenSyntaxError):
    """An error that occurred when interpreting entries as values.

    In addition to the position, this records the path of keys leading to the failing entry.
    """
    path: Tuple[str, ...]
    """The keys of the blocks containing the entry, then the key of the entry itself."""

    def __init__(
        self,
        message: str,
        file: Optional[StringPath] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        path: Tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, file, line, column)
        self.path = path

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}({self.mess!r}, {self.file!r}, '
            f'{self.line_num!r}, {self.column!r}, {self.path!r})'
        )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DeserializeError):
            return super().__eq__(other) and self.path == other.path
        return NotImplemented

    def __str__(self) -> str:
        msg = super().__str__()
        if self.path:
            return f'{msg}\nKey path: {".".join(self.path)}'
        return msg


class TypeMismatchError(DeserializeError):
    """A block was found where a value was expected, or the reverse."""


@attrs.define
class _Stream:
    """The state shared between a root cursor and all its children."""
    source: EventSource
    #: The event to return next, if has_peeked is set. None means the end of the data.
    peeked: Optional[Event] = None
    has_peeked: bool = False

    def peek(self) -> Optional[Event]:
        if not self.has_peeked:
            self.peeked = self.source.next_event()
            self.has_peeked = True
        return self.peeked

    def take(self) -> Optional[Event]:
        event = self.peek()
        self.has_peeked = False
        self.peeked = None
        return event


class Cursor:
    """Reads entries from a single block, without buffering any of it."""
    path: Tuple[str, ...]
    """The keys of the blocks leading to this one."""
    _stream: _Stream
    _parent: Optional['Cursor']
    _child: Optional['Cursor']
    _depth: int
    _finished: bool
    #: Incremented whenever an entry is consumed, so iteration can tell if it was handled.
    _consumed: int

    def __init__(self, source: EventSource) -> None:
        """Create a root cursor, reading the top level of the given event source."""
        self._stream = _Stream(source)
        self._parent = self._child = None
        self._depth = source.depth
        self._finished = False
        self._consumed = 0
        self.path = ()

    @classmethod
    def from_str(
        cls,
        data: Union[str, Iterable[str]],
        filename: Optional[StringPath] = None,
        *,
        strict_escapes: bool = False,
    ) -> Self:
        """Create a cursor reading the top level of the given text."""
        return cls(EventParser.from_str(data, filename, strict_escapes=strict_escapes))

    @classmethod
    def from_events(cls, events: Iterable[Event], filename: Optional[str] = None) -> Self:
        """Create a cursor reading from already-produced events."""
        return cls(ReplayEvents(events, filename))

    def _make_child(self, key: str) -> 'Cursor':
        """Produce the cursor for a block that was just entered."""
        child = Cursor.__new__(Cursor)
        child._stream = self._stream
        child._parent = self
        child._child = None
        child._depth = self._stream.source.depth
        child._finished = False
        child._consumed = 0
        child.path = (*self.path, key)
        return child

    def __repr__(self) -> str:
        path = '.'.join(self.path) if self.path else '<root>'
        state = 'finished' if self._finished else f'depth={self._depth}'
        return f'<Cursor {path} {state}>'

    @property
    def filename(self) -> Optional[str]:
        """The filename of the source text, if known."""
        return self._stream.source.filename

    @property
    def depth(self) -> int:
        """The number of blocks containing this one. The root cursor is at depth zero."""
        return self._depth

    @property
    def is_root(self) -> bool:
        """Check if this reads the implicit top-level block."""
        return self._parent is None

    @property
    def finished(self) -> bool:
        """If set, the end of this block has been consumed."""
        return self._finished

    @property
    def consumed(self) -> int:
        """The number of entries read, entered or skipped in this block so far."""
        return self._consumed

    def _error(
        self, kind: Type[DeserializeError], message: str,
        entry: Union[Scalar, EnterBlock],
    ) -> DeserializeError:
        """Produce an error located at this entry."""
        path = (*self.path, entry.key)
        if entry.pos is None:
            return kind(message, self.filename, path=path)
        return kind(message, self.filename, entry.pos.line, entry.pos.column, path)

    def _release_if_exhausted(self) -> bool:
        """If the next event is our closing brace, consume it and release the parent.

        Once any open child is released, the next event belongs to this block, so it can be
        peeked safely.

        Returns whether this cursor is now finished.
        """
        if self._finished:
            return True
        if self._child is not None and not self._child._release_if_exhausted():
            return False
        stream = self._stream
        if (
            self._parent is not None
            and isinstance(stream.peek(), LeaveBlock)
            and stream.source.depth == self._depth - 1
        ):
            stream.take()
            self._close()
            return True
        return False

    def _close(self) -> None:
        """Mark this as finished, allowing the parent to continue."""
        self._finished = True
        self._consumed += 1
        if self._parent is not None:
            self._parent._child = None
            self._parent._consumed += 1

    def _check_usable(self) -> None:
        """Check that no child is currently open."""
        if self._child is not None and not self._child._release_if_exhausted():
            raise RuntimeError(
                f'Cannot use the cursor for "{".".join(self.path) or "<root>"}" '
                f'while the child block "{self._child.path[-1]}" is still open!'
            )

    def _peek(self) -> Optional[Union[Scalar, EnterBlock]]:
        """Return the next event, or None if at the end of this block."""
        self._check_usable()
        if self._finished:
            return None
        event = self._stream.peek()
        if isinstance(event, LeaveBlock):
            return None
        return event

    def _current_entry(self) -> Union[Scalar, EnterBlock]:
        """Return the entry the cursor is positioned at, or fail if at the end."""
        event = self._peek()
        if event is None:
            raise UnexpectedEOFError(
                f'Attempted to read past the end of the "{".".join(self.path) or "<root>"}" block!',
                self.filename,
                *self._end_pos(),
            )
        return event

    def _end_pos(self) -> Tuple[Optional[int], Optional[int]]:
        """The position of the closing brace, if we have one."""
        event = self._stream.peeked
        if event is not None and event.pos is not None:
            return event.pos.line, event.pos.column
        return None, None

    def peek_key(self) -> Optional[str]:
        """Return the key of the next entry without consuming it, or None at the end of the block.

        This may be called any number of times without changing the position.
        """
        event = self._peek()
        return None if event is None else event.key

    def peek_pos(self) -> Optional[Position]:
        """Return the source position of the next entry, if known."""
        event = self._peek()
        return None if event is None else event.pos

    def next_is_block(self) -> bool:
        """Check if the next entry is a block. At the end of the block, this fails."""
        return isinstance(self._current_entry(), EnterBlock)

    def read_entry(self) -> Tuple[str, str]:
        """Consume a ``"key" "value"`` entry, returning both parts.

        If the entry is a block, :py:class:`TypeMismatchError` is raised.
        """
        entry = self._current_entry()
        if isinstance(entry, EnterBlock):
            raise self._error(
                TypeMismatchError,
                f'Expected a value for "{entry.key}", but found a block!',
                entry,
            )
        self._stream.take()
        self._consumed += 1
        return entry.key, entry.value

    def read_scalar(self) -> str:
        """Consume a ``"key" "value"`` entry, returning the value."""
        return self.read_entry()[1]

    def enter(self) -> 'Cursor':
        """Consume the opening of a block entry, and return a cursor reading its contents.

        The returned cursor can be used as a context manager, which finishes it when exited.
        If the entry is a single value, :py:class:`TypeMismatchError` is raised.
        """
        entry = self._current_entry()
        if isinstance(entry, Scalar):
            raise self._error(
                TypeMismatchError,
                f'Expected a block for "{entry.key}", but found the value "{entry.value}"!',
                entry,
            )
        self._stream.take()
        self._child = child = self._make_child(entry.key)
        return child

    def skip(self) -> None:
        """Discard the next entry. For blocks, the contents are scanned for braces only."""
        entry = self._current_entry()
        stream = self._stream
        stream.take()
        self._consumed += 1
        if isinstance(entry, EnterBlock):
            stream.source.skip_block()

    def abandon_child(self) -> None:
        """Discard the rest of any child block which is still open.

        This allows continuing after an error was raised while reading the child.
        """
        if self._child is not None:
            self._child.finish()

    def finish(self) -> None:
        """Discard the rest of this block, and release the parent cursor.

        For the root cursor, this reads to the end of the text.
        """
        if self._finished:
            return
        if self._child is not None:
            self._child.finish()
        while True:
            event = self._stream.peek()
            if event is None or isinstance(event, LeaveBlock):
                break
            self.skip()
        if self._parent is not None:
            # Our closing brace.
            self._stream.take()
        self._close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        # If something failed, the stream is in an unknown state, don't try reading more.
        if exc_type is None:
            self.finish()

    def __iter__(self) -> Iterator[str]:
        """Iterate over the keys in the block.

        For each, the entry should be consumed. If it is not, it'll be skipped automatically.
        """
        while (key := self.peek_key()) is not None:
            consumed = self._consumed
            yield key
            if self._consumed == consumed and self._child is None and not self._finished:
                self.skip()
