"""Maps the untyped entries of a file onto typed values.

This follows the same model as Rust's ``serde``. A *visitor* (see :py:mod:`vdf_reader.shapes`)
asks a :py:class:`Deserializer` for a particular kind of data (``deserialize_int()``,
``deserialize_map()``, ...), and the deserializer reads that from the cursor, calling the
matching ``visit_*()`` method on the visitor with the result. Maps, sequences and enums are
handed over as access objects, which read one part at a time.

KeyValues has no syntax for arrays, so sequences are formed in a few ways:

* A run of consecutive entries with the same key, for a sequence-typed field. If the key then
  appears again after some other key, :py:class:`NonConsecutiveRepeatedKeyError` is raised.
* A value written like ``"[1 2 3]"``, which is split on whitespace.
* All the values in a block, ignoring their keys. This is how a top-level sequence is read.

The top level of a file is treated like the contents of a block, so a struct may be written
without surrounding braces. Enums are externally tagged: a block containing exactly one entry,
whose key is the variant name. A plain value can also name a variant with no payload.
"""
from typing import (
    TYPE_CHECKING, Any, Generic, Iterable, Iterator, List, Optional, Sequence, Set,
    Tuple, Type, TypeVar, Union,
)
import re

from vdf_reader import StringPath
from vdf_reader.cursor import Cursor, DeserializeError, TypeMismatchError
from vdf_reader.tokenizer import Position

if TYPE_CHECKING:
    from vdf_reader.shapes import Shape
    from vdf_reader.tree import Block


__all__ = [
    'DeserializeError', 'TypeMismatchError', 'MissingFieldError', 'InvalidNumberError',
    'InvalidBooleanError', 'NonConsecutiveRepeatedKeyError', 'UnknownVariantError',
    'AmbiguousEnumRootError',
    'Visitor', 'Deserializer', 'MapAccess', 'SeqAccess', 'EnumAccess',
    'from_str', 'from_value', 'from_cursor',
]

T = TypeVar('T')
ErrorT = TypeVar('ErrorT', bound=DeserializeError)

# Stricter than int() and float(), which allow surrounding whitespace and underscores.
_INT_RE = re.compile(r'[+-]?[0-9]+')
_FLOAT_RE = re.compile(
    r'[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|[+-]?(?:inf|infinity|nan)',
    re.IGNORECASE,
)


class MissingFieldError(DeserializeError):
    """A required field was not present in the block."""


class InvalidNumberError(DeserializeError):
    """A value could not be parsed as an integer or float."""


class InvalidBooleanError(DeserializeError):
    """A boolean value was something other than ``0`` or ``1``."""


class NonConsecutiveRepeatedKeyError(DeserializeError):
    """A key which formed a sequence appeared again after a different key."""


class UnknownVariantError(DeserializeError):
    """The key selecting an enum variant did not match any known variant."""


class AmbiguousEnumRootError(DeserializeError):
    """A block selecting an enum variant did not contain exactly one entry."""


class _Located:
    """Shared logic for producing errors with the current location."""
    filename: Optional[str]
    path: Tuple[str, ...]

    def _pos(self) -> Optional[Position]:
        """The position to report errors at."""
        return None

    def error(self, kind: Type[ErrorT], message: str, *args: object) -> ErrorT:
        """Produce an error at the current location, formatting the message if args are given."""
        if args:
            message = message.format(*args)
        pos = self._pos()
        if pos is None:
            return kind(message, self.filename, path=self.path)
        return kind(message, self.filename, pos.line, pos.column, self.path)

    def invalid_type(self, found: str, visitor: 'Visitor[Any]') -> TypeMismatchError:
        """Produce the error for when the data does not match what the visitor wants."""
        return self.error(TypeMismatchError, 'Expected {}, but found {}!', visitor.expecting, found)


class Visitor(Generic[T]):
    """Receives the data read by a :py:class:`Deserializer`, and produces a value.

    By default, each method raises a :py:class:`TypeMismatchError`.
    Subclasses override the ones for the kinds of data they accept.
    """
    #: Describes the expected data, for error messages.
    expecting: str = 'a value'

    def visit_str(self, value: str, de: 'Deserializer') -> T:
        """A string value was read."""
        raise de.invalid_type(f'the value "{value}"', self)

    def visit_int(self, value: int, de: 'Deserializer') -> T:
        """An integer value was read."""
        raise de.invalid_type(f'the integer {value}', self)

    def visit_float(self, value: float, de: 'Deserializer') -> T:
        """A float value was read."""
        raise de.invalid_type(f'the float {value}', self)

    def visit_bool(self, value: bool, de: 'Deserializer') -> T:
        """A boolean value was read."""
        raise de.invalid_type(f'the boolean {value}', self)

    def visit_some(self, de: 'Deserializer') -> T:
        """An optional value is present, and can be read from the deserializer."""
        raise de.invalid_type('an optional value', self)

    def visit_map(self, access: 'MapAccess') -> T:
        """A block is being read."""
        raise access.invalid_type('a block', self)

    def visit_seq(self, access: 'SeqAccess') -> T:
        """A sequence is being read."""
        raise access.invalid_type('a sequence', self)

    def visit_enum(self, access: 'EnumAccess') -> T:
        """An enum variant has been selected."""
        raise access.invalid_type(f'the variant "{access.variant}"', self)


class Deserializer(_Located):
    """Reads one value from the file, in the form a visitor requests."""
    def __init__(self, filename: Optional[str], path: Tuple[str, ...]) -> None:
        self.filename = filename
        self.path = path

    def _scalar(self, visitor: Visitor[Any]) -> str:
        """Read the value as a single string."""
        raise NotImplementedError

    def deserialize_any(self, visitor: Visitor[T]) -> T:
        """Read whatever kind of data is present, as a string or a map."""
        raise NotImplementedError

    def deserialize_str(self, visitor: Visitor[T]) -> T:
        """Read a string value."""
        return visitor.visit_str(self._scalar(visitor), self)

    def deserialize_int(self, visitor: Visitor[T]) -> T:
        """Read an integer value."""
        value = self._scalar(visitor)
        if _INT_RE.fullmatch(value) is None:
            raise self.error(InvalidNumberError, 'Expected an integer, but found "{}"!', value)
        return visitor.visit_int(int(value), self)

    def deserialize_float(self, visitor: Visitor[T]) -> T:
        """Read a float value."""
        value = self._scalar(visitor)
        if _FLOAT_RE.fullmatch(value) is None:
            raise self.error(InvalidNumberError, 'Expected a number, but found "{}"!', value)
        return visitor.visit_float(float(value), self)

    def deserialize_bool(self, visitor: Visitor[T]) -> T:
        """Read a boolean. Only ``0`` and ``1`` are accepted."""
        value = self._scalar(visitor)
        if value == '1':
            return visitor.visit_bool(True, self)
        elif value == '0':
            return visitor.visit_bool(False, self)
        raise self.error(InvalidBooleanError, 'Expected "0" or "1", but found "{}"!', value)

    def deserialize_option(self, visitor: Visitor[T]) -> T:
        """Read an optional value.

        The format has no concept of null, so if this is reached the value is present.
        """
        return visitor.visit_some(self)

    def deserialize_seq(self, visitor: Visitor[T]) -> T:
        """Read a sequence of values."""
        raise NotImplementedError

    def deserialize_tuple(self, length: int, visitor: Visitor[T]) -> T:
        """Read a fixed-length sequence. The visitor checks the length."""
        return self.deserialize_seq(visitor)

    def deserialize_map(self, visitor: Visitor[T]) -> T:
        """Read a block of keys and values."""
        raise NotImplementedError

    def deserialize_struct(self, fields: Sequence[str], visitor: Visitor[T]) -> T:
        """Read a block with the specified known fields."""
        return self.deserialize_map(visitor)

    def deserialize_enum(self, variants: Sequence[str], visitor: Visitor[T]) -> T:
        """Read an enum, whose variant is one of those specified."""
        raise NotImplementedError

    def deserialize_ignored(self) -> None:
        """Discard this value."""
        raise NotImplementedError

    def _check_variant(self, name: str, variants: Sequence[str]) -> None:
        if name not in variants:
            raise self.error(
                UnknownVariantError,
                'Unknown variant "{}", expected one of {}.',
                name, ', '.join(f'"{var}"' for var in variants),
            )


class BlockDeserializer(Deserializer):
    """Reads the contents of a block, or the top level of the file."""
    def __init__(self, cursor: Cursor) -> None:
        super().__init__(cursor.filename, cursor.path)
        self.cursor = cursor

    def _pos(self) -> Optional[Position]:
        if self.cursor.finished:
            return None
        return self.cursor.peek_pos()

    def _scalar(self, visitor: Visitor[Any]) -> str:
        raise self.invalid_type('a block', visitor)

    def deserialize_any(self, visitor: Visitor[T]) -> T:
        return self.deserialize_map(visitor)

    def deserialize_map(self, visitor: Visitor[T]) -> T:
        return visitor.visit_map(MapAccess(self.cursor))

    def deserialize_seq(self, visitor: Visitor[T]) -> T:
        return visitor.visit_seq(_BlockValues(self.cursor))

    def deserialize_enum(self, variants: Sequence[str], visitor: Visitor[T]) -> T:
        cursor = self.cursor
        name = cursor.peek_key()
        if name is None:
            raise self.error(
                AmbiguousEnumRootError,
                'Expected a single entry naming one of {}, but the block is empty!',
                ', '.join(f'"{var}"' for var in variants),
            )
        consumed = cursor.consumed
        entry = EntryDeserializer(cursor, name)
        try:
            entry._check_variant(name, variants)
            result = visitor.visit_enum(EnumAccess(entry, name, entry))
        except DeserializeError:
            # A second entry is reported in preference to problems with the first.
            cursor.abandon_child()
            if cursor.consumed == consumed:
                cursor.skip()
            self._check_single(name)
            raise
        self._check_single(name)
        return result

    def _check_single(self, name: str) -> None:
        """Check that the variant entry was the only one in the block."""
        extra = self.cursor.peek_key()
        if extra is not None:
            raise self.error(
                AmbiguousEnumRootError,
                'Expected only the variant "{}", but found another entry "{}"!',
                name, extra,
            )

    def deserialize_ignored(self) -> None:
        self.cursor.finish()


class EntryDeserializer(Deserializer):
    """Reads the value of the entry the cursor is positioned at."""
    #: Set if a run of repeated keys was read as a sequence.
    formed_run: bool

    def __init__(
        self,
        cursor: Cursor,
        key: str,
        path: Optional[Tuple[str, ...]] = None,
        allow_run: bool = False,
    ) -> None:
        super().__init__(cursor.filename, (*cursor.path, key) if path is None else path)
        self.cursor = cursor
        self.key = key
        self.allow_run = allow_run
        self.formed_run = False
        self.pos = cursor.peek_pos()

    def _pos(self) -> Optional[Position]:
        return self.pos

    def _scalar(self, visitor: Visitor[Any]) -> str:
        if self.cursor.next_is_block():
            raise self.invalid_type('a block', visitor)
        return self.cursor.read_scalar()

    def _enter(self) -> Cursor:
        child = self.cursor.enter()
        child.path = self.path
        return child

    def deserialize_any(self, visitor: Visitor[T]) -> T:
        if self.cursor.next_is_block():
            return self.deserialize_map(visitor)
        else:
            return self.deserialize_str(visitor)

    def deserialize_map(self, visitor: Visitor[T]) -> T:
        if not self.cursor.next_is_block():
            raise self.invalid_type(f'the value "{self.cursor.read_scalar()}"', visitor)
        with self._enter() as child:
            return visitor.visit_map(MapAccess(child))

    def deserialize_seq(self, visitor: Visitor[T]) -> T:
        cursor = self.cursor
        if cursor.next_is_block():
            if self.allow_run:
                self.formed_run = True
                return visitor.visit_seq(_RunAccess(self))
            with self._enter() as child:
                return visitor.visit_seq(_BlockValues(child))
        value = cursor.read_scalar()
        if len(value) >= 2 and value[0] == '[' and value[-1] == ']':
            return visitor.visit_seq(_StringArray(self, value[1:-1].split()))
        if self.allow_run:
            # Already read, so pass it in directly.
            self.formed_run = True
            return visitor.visit_seq(_RunAccess(self, value))
        raise self.invalid_type(f'the value "{value}"', visitor)

    def deserialize_enum(self, variants: Sequence[str], visitor: Visitor[T]) -> T:
        if self.cursor.next_is_block():
            with self._enter() as child:
                return BlockDeserializer(child).deserialize_enum(variants, visitor)
        name = self.cursor.read_scalar()
        self._check_variant(name, variants)
        return visitor.visit_enum(EnumAccess(self, name, None))

    def deserialize_ignored(self) -> None:
        self.cursor.skip()


class StrDeserializer(Deserializer):
    """Reads a value which has already been extracted as a string."""
    def __init__(
        self,
        value: str,
        filename: Optional[str],
        path: Tuple[str, ...],
        pos: Optional[Position] = None,
    ) -> None:
        super().__init__(filename, path)
        self.value = value
        self.pos = pos

    def _pos(self) -> Optional[Position]:
        return self.pos

    def _scalar(self, visitor: Visitor[Any]) -> str:
        return self.value

    def deserialize_any(self, visitor: Visitor[T]) -> T:
        return self.deserialize_str(visitor)

    def deserialize_seq(self, visitor: Visitor[T]) -> T:
        raise self.invalid_type(f'the value "{self.value}"', visitor)

    def deserialize_map(self, visitor: Visitor[T]) -> T:
        raise self.invalid_type(f'the value "{self.value}"', visitor)

    def deserialize_enum(self, variants: Sequence[str], visitor: Visitor[T]) -> T:
        self._check_variant(self.value, variants)
        return visitor.visit_enum(EnumAccess(self, self.value, None))

    def deserialize_ignored(self) -> None:
        pass


class MapAccess(_Located):
    """Reads the keys and values of a block one at a time.

    Call :py:meth:`next_key()`, then either :py:meth:`next_value()` or :py:meth:`skip_value()`.
    If neither is called, the value is skipped when the next key is requested.
    """
    def __init__(self, cursor: Cursor) -> None:
        self.cursor = cursor
        self.filename = cursor.filename
        self.path = cursor.path
        self._pending: Optional[str] = None
        self._pending_pos: Optional[Position] = None
        # Keys which have been read as sequences, and so cannot appear again.
        self._runs: Set[str] = set()

    def _pos(self) -> Optional[Position]:
        if self._pending_pos is not None:
            return self._pending_pos
        if self.cursor.finished:
            return None
        return self.cursor.peek_pos()

    def __iter__(self) -> Iterator[str]:
        """Iterate over the keys in the block."""
        while (key := self.next_key()) is not None:
            yield key

    def next_key(self) -> Optional[str]:
        """Return the next key, or None if the block is finished."""
        if self._pending is not None:
            self.skip_value()
        key = self.cursor.peek_key()
        if key is None:
            return None
        self._pending = key
        self._pending_pos = self.cursor.peek_pos()
        if key in self._runs:
            err = self.error(
                NonConsecutiveRepeatedKeyError,
                'The key "{}" was already read as a sequence, but appears again here. '
                'Repeated keys must be directly after each other.',
                key,
            )
            err.path = (*self.path, key)
            raise err
        return key

    def next_value(self, shape: 'Shape[T]') -> T:
        """Read the value for the key that was just returned."""
        key = self._pending
        if key is None:
            raise RuntimeError('next_key() must be called before next_value()!')
        de = EntryDeserializer(self.cursor, key, allow_run=True)
        self._pending = self._pending_pos = None
        value = shape.deserialize(de)
        if de.formed_run:
            self._runs.add(key)
        return value

    def skip_value(self) -> None:
        """Discard the value for the key that was just returned."""
        if self._pending is None:
            raise RuntimeError('next_key() must be called before skip_value()!')
        self._pending = self._pending_pos = None
        self.cursor.skip()

    def missing_field(self, name: str) -> MissingFieldError:
        """Produce the error for a required field that was not present."""
        return MissingFieldError(
            f'Missing required key "{name}"!',
            self.filename,
            path=(*self.path, name),
        )


class SeqAccess(_Located):
    """Reads the elements of a sequence one at a time."""
    index: int = 0

    def has_next(self) -> bool:
        """Check if another element is present."""
        raise NotImplementedError

    def next_element(self, shape: 'Shape[T]') -> T:
        """Read the next element. This must only be called if :py:meth:`has_next()` is true."""
        raise NotImplementedError

    def elements(self, shape: 'Shape[T]') -> Iterator[T]:
        """Read all the remaining elements."""
        while self.has_next():
            yield self.next_element(shape)

    def skip_rest(self) -> None:
        """Discard all the remaining elements."""
        raise NotImplementedError

    def invalid_length(self, expected: int) -> TypeMismatchError:
        """Produce the error for when the sequence is too short or too long."""
        count = self.index
        if self.has_next():
            self.skip_rest()
            return self.error(
                TypeMismatchError,
                'Expected {} elements, but found more!',
                expected,
            )
        return self.error(
            TypeMismatchError,
            'Expected {} elements, but found {}!',
            expected, count,
        )


class _RunAccess(SeqAccess):
    """A sequence made from consecutive entries with the same key."""
    def __init__(self, entry: EntryDeserializer, first: Optional[str] = None) -> None:
        self.cursor = entry.cursor
        self.key = entry.key
        self.filename = entry.filename
        self.path = entry.path
        self.pos = entry.pos
        # If the first scalar value was already read, this holds it.
        self._first = first
        self._started = first is not None

    def _pos(self) -> Optional[Position]:
        return self.pos

    def has_next(self) -> bool:
        if self.index == 0:
            return True
        return self.cursor.peek_key() == self.key

    def next_element(self, shape: 'Shape[T]') -> T:
        path = (*self.path, str(self.index))
        self.index += 1
        if self._first is not None:
            value, self._first = self._first, None
            return shape.deserialize(StrDeserializer(value, self.filename, path, self.pos))
        self.pos = self.cursor.peek_pos()
        return shape.deserialize(EntryDeserializer(self.cursor, self.key, path))

    def skip_rest(self) -> None:
        self._first = None
        if self.index == 0:
            self.index = 1
            if not self._started:
                self.cursor.skip()
        while self.cursor.peek_key() == self.key:
            self.cursor.skip()


class _BlockValues(SeqAccess):
    """A sequence of all the values in a block, ignoring the keys."""
    def __init__(self, cursor: Cursor) -> None:
        self.cursor = cursor
        self.filename = cursor.filename
        self.path = cursor.path

    def _pos(self) -> Optional[Position]:
        if self.cursor.finished:
            return None
        return self.cursor.peek_pos()

    def has_next(self) -> bool:
        return self.cursor.peek_key() is not None

    def next_element(self, shape: 'Shape[T]') -> T:
        key = self.cursor.peek_key()
        if key is None:
            raise self.error(TypeMismatchError, 'No more elements in the sequence!')
        self.index += 1
        return shape.deserialize(EntryDeserializer(self.cursor, key))

    def skip_rest(self) -> None:
        while self.cursor.peek_key() is not None:
            self.cursor.skip()


class _StringArray(SeqAccess):
    """A sequence written inside a single value, like ``"[1 2 3]"``."""
    def __init__(self, entry: Deserializer, items: List[str]) -> None:
        self.filename = entry.filename
        self.path = entry.path
        self.pos = entry._pos()
        self.items = items

    def _pos(self) -> Optional[Position]:
        return self.pos

    def has_next(self) -> bool:
        return self.index < len(self.items)

    def next_element(self, shape: 'Shape[T]') -> T:
        value = self.items[self.index]
        path = (*self.path, str(self.index))
        self.index += 1
        return shape.deserialize(StrDeserializer(value, self.filename, path, self.pos))

    def skip_rest(self) -> None:
        self.index = len(self.items)


class EnumAccess(_Located):
    """The variant selected for an enum, allowing the payload to be read."""
    def __init__(self, source: Deserializer, variant: str, payload: Optional[Deserializer]) -> None:
        self.filename = source.filename
        self.path = source.path
        self._source = source
        #: The name of the selected variant.
        self.variant = variant
        self._payload = payload

    def _pos(self) -> Optional[Position]:
        return self._source._pos()

    def unit_variant(self) -> None:
        """Check that the variant has no payload, meaning an empty string, or an empty block."""
        payload = self._payload
        if payload is None:
            return
        payload.deserialize_any(_UNIT_VISITOR)

    def payload(self) -> Deserializer:
        """Return a deserializer for the variant's payload."""
        if self._payload is None:
            raise self.error(
                TypeMismatchError,
                'The variant "{}" requires a value, but was given as a plain name!',
                self.variant,
            )
        return self._payload

    def newtype_variant(self, shape: 'Shape[T]') -> T:
        """Read the payload with the given shape."""
        return shape.deserialize(self.payload())


class _UnitVisitor(Visitor[None]):
    """Accepts only an empty string or block."""
    expecting = 'an empty value'

    def visit_str(self, value: str, de: Deserializer) -> None:
        if value:
            raise de.invalid_type(f'the value "{value}"', self)

    def visit_map(self, access: MapAccess) -> None:
        key = access.next_key()
        if key is not None:
            raise access.invalid_type(f'the key "{key}"', self)


_UNIT_VISITOR = _UnitVisitor()


def _to_shape(target: Any) -> 'Shape[Any]':
    """Accept either a shape or a type."""
    from vdf_reader.shapes import shape_of
    return shape_of(target)


def from_cursor(cursor: Cursor, target: Any) -> Any:
    """Read a value from the block the cursor is reading.

    ``target`` is either a :py:class:`~vdf_reader.shapes.Shape`, or a type which
    :py:func:`~vdf_reader.shapes.shape_of()` can describe.
    """
    return _to_shape(target).deserialize(BlockDeserializer(cursor))


def from_str(
    data: Union[str, Iterable[str]],
    target: Any,
    filename: Optional[StringPath] = None,
    *,
    strict_escapes: bool = False,
) -> Any:
    """Parse the given text, producing a value of the specified type.

    The whole text is read, so syntax errors anywhere in it will be raised.
    """
    shape = _to_shape(target)
    cursor = Cursor.from_str(data, filename, strict_escapes=strict_escapes)
    result = shape.deserialize(BlockDeserializer(cursor))
    cursor.finish()
    return result


def from_value(block: 'Block', target: Any, filename: Optional[str] = None) -> Any:
    """Produce a value of the specified type from an already parsed tree."""
    shape = _to_shape(target)
    cursor = Cursor.from_events(block.events(), filename)
    result = shape.deserialize(BlockDeserializer(cursor))
    cursor.finish()
    return result
