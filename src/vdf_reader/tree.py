"""An in-memory tree of entries, for when all the data in a file is needed.

A :py:class:`Block` holds an ordered list of ``(key, value)`` pairs, where each value is either
a string or another block. Keys may be repeated, and the order is preserved::

    >>> block = parse('''
    ... "Weapon" { "name" "crowbar" "damage" "25" "sound" "hit1" "sound" "hit2" }
    ... ''')
    >>> block.lookup('Weapon.damage')
    '25'
    >>> block.lookup('Weapon.sound.1')
    'hit2'
    >>> block.find_block('Weapon')['name']
    'crowbar'

Directives like ``#include`` are kept as ordinary entries, but their keys and values are
:py:class:`~vdf_reader.parser.Statement` strings. :py:meth:`Block.statements()` lists them.

Unlike the typed deserialisation in :py:mod:`vdf_reader.de`, no interpretation is done and all
values remain strings.
"""
from typing import (
    Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar, Union, cast,
    overload,
)
from typing_extensions import TypeAlias

from vdf_reader import StringPath
from vdf_reader.cursor import Cursor
from vdf_reader.parser import EnterBlock, Event, LeaveBlock, Scalar, Statement
from vdf_reader.tokenizer import format_exc_fileinfo


__all__ = ['Block', 'Value', 'NoKeyError', 'parse']
T = TypeVar('T')
Value: TypeAlias = Union[str, 'Block']
_AsDictRet: TypeAlias = Dict[str, Union[str, '_AsDictRet']]

# Sentinel for find_key() with no default.
_NO_KEY_FOUND = cast(str, object())


class NoKeyError(LookupError):
    """Raised if a key is not found when searching with
    :py:meth:`~Block.find_key()`, :py:meth:`~Block.find_block()`, etc."""
    key: str  #: The key that was missing.
    line_num: Optional[int]  #: The line number where the block is defined, if known.
    filename: Optional[str]  #: The filename where the block is defined, if known.

    def __init__(
        self, key: str,
        line_num: Optional[int] = None,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(key)
        self.key = key
        self.line_num = line_num
        self.filename = filename

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.key!r})'

    def __str__(self) -> str:
        return format_exc_fileinfo(f'No key {self.key}!', self.filename, self.line_num)


class Block:
    """A block of entries, in file order."""
    line_num: Optional[int]
    """The line the block started on, if known."""
    filename: Optional[str]
    """The file the block was read from, if known."""
    _entries: List[Tuple[str, Value]]

    def __init__(
        self,
        entries: Iterable[Tuple[str, Value]] = (),
        *,
        line_num: Optional[int] = None,
        filename: Optional[str] = None,
    ) -> None:
        self._entries = list(entries)
        self.line_num = line_num
        self.filename = filename

    @classmethod
    def parse(
        cls,
        data: Union[str, Iterable[str]],
        filename: Optional[StringPath] = None,
        *,
        strict_escapes: bool = False,
    ) -> 'Block':
        """Parse the text of a file, producing the root block.

        :param data: Either a string, or an iterable of strings, like an open file.
        :param filename: If provided, this is used in error messages.
        :param strict_escapes: If set, unknown escape sequences in strings are an error.
        """
        cursor = Cursor.from_str(data, filename, strict_escapes=strict_escapes)
        return cls.from_cursor(cursor)

    @classmethod
    def from_cursor(cls, cursor: Cursor) -> 'Block':
        """Read the remaining entries of the cursor's block."""
        pos = cursor.peek_pos()
        block = cls(line_num=pos.line if pos is not None else None, filename=cursor.filename)
        while (key := cursor.peek_key()) is not None:
            if cursor.next_is_block():
                with cursor.enter() as child:
                    block._entries.append((key, cls.from_cursor(child)))
            else:
                block._entries.append(cursor.read_entry())
        if cursor.is_root:
            cursor.finish()
        return block

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._entries!r})'

    __hash__ = None  # type: ignore[assignment]

    def __eq__(self, other: object) -> bool:
        """Blocks are equal if they have the same entries in the same order."""
        if isinstance(other, Block):
            return self._entries == other._entries
        return NotImplemented

    def __len__(self) -> int:
        """Determine the number of entries."""
        return len(self._entries)

    def __bool__(self) -> bool:
        """Blocks are true if they have entries."""
        return len(self._entries) > 0

    def __iter__(self) -> Iterator[Tuple[str, Value]]:
        """Iterate through the ``(key, value)`` entries."""
        return iter(self._entries)

    def __contains__(self, key: str) -> bool:
        """Check to see if a key is present in the entries."""
        return any(name == key for name, _ in self._entries)

    def keys(self) -> Iterator[str]:
        """Iterate over the keys, including duplicates."""
        for key, _ in self._entries:
            yield key

    def values(self) -> Iterator[Value]:
        """Iterate over the values."""
        for _, value in self._entries:
            yield value

    def append(self, key: str, value: Value) -> None:
        """Add an entry to the end of the block."""
        if not isinstance(value, (str, Block)):
            raise TypeError(f'Values must be strings or blocks, not {value!r}')
        self._entries.append((key, value))

    @overload
    def __getitem__(self, index: int) -> Tuple[str, Value]: ...
    @overload
    def __getitem__(self, index: str) -> Value: ...
    @overload
    def __getitem__(self, index: Tuple[str, T]) -> Union[Value, T]: ...

    def __getitem__(
        self,
        index: Union[int, str, Tuple[str, T]],
    ) -> Union[Tuple[str, Value], Value, T]:
        """Allow indexing the entries directly.

        - If given an index, it will return the entry in that position.
        - If given a string, it will find the last value with that key.
          (Default can be chosen by passing a 2-tuple like block[key, default])
        - If none are found, it raises :py:class:`NoKeyError`.
        """
        if isinstance(index, int):
            return self._entries[index]
        elif isinstance(index, tuple):
            key, default = index
            try:
                return self.find_key(key)
            except NoKeyError:
                return default
        elif isinstance(index, str):
            return self.find_key(index)
        else:
            raise TypeError(f'Unknown key type: {index!r}')

    def find_key(self, key: str, default: str = _NO_KEY_FOUND) -> Value:
        """Obtain the value with a given key.

        - If no entry is found with the given key, this will return the default value, or raise
          :py:class:`NoKeyError` if none is provided.
        - This prefers keys located closer to the end of the block.
        """
        for name, value in reversed(self._entries):
            if name == key:
                return value
        if default is _NO_KEY_FOUND:
            raise NoKeyError(key, self.line_num, self.filename)
        return default

    def find_block(self, key: str, or_blank: bool = False) -> 'Block':
        """Obtain the child block with a given key.

        - If no block is found with the given key and ``or_blank`` is true, a
          blank :py:class:`Block` will be returned. Otherwise, :py:class:`NoKeyError` will
          be raised.
        - This prefers keys located closer to the end of the block.
        """
        for name, value in reversed(self._entries):
            if name == key and isinstance(value, Block):
                return value
        if or_blank:
            return Block()
        raise NoKeyError(key, self.line_num, self.filename)

    def statements(self) -> Iterator[Tuple[str, Value]]:
        """Iterate over the entries using ``#`` directives, like ``#base "file.res"``.

        These are entries whose key or value is a :py:class:`~vdf_reader.parser.Statement`.
        """
        for key, value in self._entries:
            if isinstance(key, Statement) or isinstance(value, Statement):
                yield key, value

    def get_all(self, key: str) -> List[Value]:
        """Return every value with this key, in order."""
        return [value for name, value in self._entries if name == key]

    def find_all(self, *keys: str) -> Iterator[Value]:
        """Search through the tree, yielding all values that match a particular path of keys."""
        if not keys:
            raise ValueError('Cannot find_all without keys!')
        targ_key, rest = keys[0], keys[1:]
        for name, value in self._entries:
            if name != targ_key:
                continue
            if rest:
                if isinstance(value, Block):
                    yield from value.find_all(*rest)
            else:
                yield value

    def lookup(self, path: str) -> Value:
        """Find a value using a dotted path like ``"Root.child.key"``.

        If a key is repeated, all the values are collected into a list, and the next part of the
        path must then be an index into that list.
        """
        current: Union[Value, List[Value]] = self
        for part in path.split('.'):
            part = part.strip()
            if isinstance(current, list):
                try:
                    current = current[int(part)]
                except (ValueError, IndexError):
                    raise NoKeyError(path, self.line_num, self.filename) from None
            elif isinstance(current, Block):
                found = current.get_all(part)
                if not found:
                    raise NoKeyError(path, self.line_num, self.filename)
                current = found[0] if len(found) == 1 else found
            else:
                raise NoKeyError(path, self.line_num, self.filename)
        if isinstance(current, list):
            raise NoKeyError(path, self.line_num, self.filename)
        return current

    def as_dict(self) -> _AsDictRet:
        """Convert this tree into a tree of dictionaries.

        This keeps only the last if multiple entries have the same key.
        """
        return {
            key: value.as_dict() if isinstance(value, Block) else value
            for key, value in self._entries
        }

    def as_array(self, *, conv: Callable[[str], Any] = str) -> List[Any]:
        """Convert the block into a list of values. The keys are ignored.

        Each entry must be a single value, not a block.
        """
        arr = []
        for key, value in self._entries:
            if isinstance(value, Block):
                raise ValueError(f'Cannot have sub-blocks ("{key}") in an array of values!')
            arr.append(conv(value))
        return arr

    def events(self) -> Iterator[Event]:
        """Produce the events which would be parsed for the contents of this block."""
        for key, value in self._entries:
            if isinstance(value, Block):
                yield EnterBlock(key)
                yield from value.events()
                yield LeaveBlock()
            else:
                yield Scalar(key, value)


def parse(
    data: Union[str, Iterable[str]],
    filename: Optional[StringPath] = None,
    *,
    strict_escapes: bool = False,
) -> Block:
    """Parse the text of a file, producing the root block."""
    return Block.parse(data, filename, strict_escapes=strict_escapes)
