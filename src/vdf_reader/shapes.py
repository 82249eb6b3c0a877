"""Describes the types that :py:mod:`vdf_reader.de` can produce.

Each shape is a :py:class:`~vdf_reader.de.Visitor`, which asks the deserializer for the kind of
data it needs. Shapes can be built directly, or derived from type annotations with
:py:func:`shape_of()`::

    @attrs.frozen
    class Sprite:
        texture: str = attrs.field(metadata={"vdf_name": "$basetexture"})
        origin: typing.Tuple[float, float] = attrs.field(metadata={"vdf_name": "$spriteorigin"})

    from_str('"$basetexture" "sprites/glow" "$spriteorigin" "[0.5 0.5]"', Sprite)
    # Sprite(texture='sprites/glow', origin=(0.5, 0.5))

The following types are understood: ``str``, ``int``, ``float``, ``bool``, ``None``, lists,
tuples, dicts with string keys, :py:data:`~typing.Optional`, attrs classes, enums, unions of
attrs classes (selected by class name, or a ``vdf_name`` class attribute), and
:py:data:`~typing.Any` or :py:class:`~vdf_reader.tree.Block` for untyped data.
"""
from typing import (
    Any, Callable, Dict, List, Mapping as MappingT, Optional as OptionalT, Sequence as
    SequenceT, Tuple as TupleT, Type, TypeVar, Union, get_args, get_origin,
)
import collections.abc
import enum

import attrs

from vdf_reader import logger
from vdf_reader.de import Deserializer, EnumAccess, MapAccess, SeqAccess, Visitor
from vdf_reader.tree import Block, Value


__all__ = [
    'Shape', 'String', 'Integer', 'Float', 'Boolean', 'Unit', 'Sequence', 'Tuple', 'Mapping',
    'Optional', 'Struct', 'StructField', 'TaggedEnum', 'AnyValue', 'shape_of',
]
LOGGER = logger.get_logger('shapes')
T = TypeVar('T')
ValueT = TypeVar('ValueT')


class Shape(Visitor[T]):
    """A visitor which knows how to request its data."""
    def deserialize(self, de: Deserializer) -> T:
        """Read a value from the deserializer."""
        raise NotImplementedError

    def missing(self, access: MapAccess, name: str) -> T:
        """Called when a field with this shape was not present in a block."""
        raise access.missing_field(name)

    def __repr__(self) -> str:
        return f'{type(self).__name__}()'


class String(Shape[str]):
    """Any value, as a string."""
    expecting = 'a string'

    def deserialize(self, de: Deserializer) -> str:
        return de.deserialize_str(self)

    def visit_str(self, value: str, de: Deserializer) -> str:
        # Statements become plain text.
        return str(value)


class Integer(Shape[int]):
    """A whole number."""
    expecting = 'an integer'

    def deserialize(self, de: Deserializer) -> int:
        return de.deserialize_int(self)

    def visit_int(self, value: int, de: Deserializer) -> int:
        return value


class Float(Shape[float]):
    """A decimal number."""
    expecting = 'a number'

    def deserialize(self, de: Deserializer) -> float:
        return de.deserialize_float(self)

    def visit_float(self, value: float, de: Deserializer) -> float:
        return value


class Boolean(Shape[bool]):
    """A value of ``0`` or ``1``."""
    expecting = 'a boolean'

    def deserialize(self, de: Deserializer) -> bool:
        return de.deserialize_bool(self)

    def visit_bool(self, value: bool, de: Deserializer) -> bool:
        return value


class Unit(Shape[None]):
    """An empty value or block, producing None."""
    expecting = 'an empty value'

    def deserialize(self, de: Deserializer) -> None:
        return de.deserialize_any(self)

    def visit_str(self, value: str, de: Deserializer) -> None:
        if value:
            raise de.invalid_type(f'the value "{value}"', self)

    def visit_map(self, access: MapAccess) -> None:
        key = access.next_key()
        if key is not None:
            raise access.invalid_type(f'the key "{key}"', self)


class Sequence(Shape[SequenceT[ValueT]]):
    """Any number of values with the same shape.

    The ``factory`` converts the list of elements to the final type.
    """
    def __init__(
        self,
        item: Shape[ValueT],
        factory: Callable[[List[ValueT]], SequenceT[ValueT]] = list,
    ) -> None:
        self.item = item
        self.factory = factory

    def __repr__(self) -> str:
        return f'Sequence({self.item!r})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return f'a sequence of {self.item.expecting}'

    def deserialize(self, de: Deserializer) -> SequenceT[ValueT]:
        return de.deserialize_seq(self)

    def visit_seq(self, access: SeqAccess) -> SequenceT[ValueT]:
        return self.factory(list(access.elements(self.item)))


class Tuple(Shape[TupleT[Any, ...]]):
    """A fixed number of values, each with their own shape."""
    def __init__(self, *items: Shape[Any]) -> None:
        self.items = items

    def __repr__(self) -> str:
        return f'Tuple({", ".join(map(repr, self.items))})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return f'a sequence of {len(self.items)} values'

    def deserialize(self, de: Deserializer) -> TupleT[Any, ...]:
        return de.deserialize_tuple(len(self.items), self)

    def visit_seq(self, access: SeqAccess) -> TupleT[Any, ...]:
        values = []
        for item in self.items:
            if not access.has_next():
                raise access.invalid_length(len(self.items))
            values.append(access.next_element(item))
        if access.has_next():
            raise access.invalid_length(len(self.items))
        return tuple(values)


class Mapping(Shape[Dict[str, ValueT]]):
    """A block with arbitrary keys, each holding a value of the same shape.

    If a key is repeated, the last value is used.
    """
    def __init__(self, value: Shape[ValueT]) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f'Mapping({self.value!r})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return f'a block of {self.value.expecting}'

    def deserialize(self, de: Deserializer) -> Dict[str, ValueT]:
        return de.deserialize_map(self)

    def visit_map(self, access: MapAccess) -> Dict[str, ValueT]:
        result: Dict[str, ValueT] = {}
        for key in access:
            if key in result:
                LOGGER.debug('Key "{}" is repeated in {}, using the last value.', key, _path_str(access))
            result[key] = access.next_value(self.value)
        return result


class Optional(Shape[OptionalT[ValueT]]):
    """A value which may be omitted from the block, producing None."""
    def __init__(self, inner: Shape[ValueT]) -> None:
        self.inner = inner

    def __repr__(self) -> str:
        return f'Optional({self.inner!r})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return self.inner.expecting

    def deserialize(self, de: Deserializer) -> OptionalT[ValueT]:
        return de.deserialize_option(self)

    def visit_some(self, de: Deserializer) -> OptionalT[ValueT]:
        return self.inner.deserialize(de)

    def missing(self, access: MapAccess, name: str) -> OptionalT[ValueT]:
        return None


@attrs.frozen
class StructField:
    """A field in a :py:class:`Struct`."""
    key: str  # The key in the file.
    alias: str  # The parameter name for the class.
    shape: Shape[Any]
    has_default: bool = False


class Struct(Shape[T]):
    """A block with a known set of keys, used to construct a class.

    Unknown keys are ignored. If a key is repeated, the last value is used, unless the field is a
    sequence.
    """
    def __init__(self, cls: Callable[..., T], fields: OptionalT[List[StructField]] = None) -> None:
        self.cls = cls
        self._fields: OptionalT[Dict[str, StructField]] = None
        if fields is not None:
            self._fields = {field.key: field for field in fields}

    @classmethod
    def from_attrs(cls, klass: Type[T]) -> 'Struct[T]':
        """Create a struct, whose fields are derived from an attrs class when first used."""
        return cls(klass)

    def __repr__(self) -> str:
        return f'Struct({getattr(self.cls, "__name__", self.cls)!r})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return f'a block for {getattr(self.cls, "__name__", "a struct")}'

    @property
    def fields(self) -> Dict[str, StructField]:
        """The fields for the struct, indexed by their key."""
        if self._fields is None:
            if not isinstance(self.cls, type):
                raise TypeError(f'Fields must be specified for non-class callable {self.cls!r}!')
            # Assigned first, so recursive classes refer back to this struct.
            self._fields = {}
            self._fields.update(_attrs_fields(self.cls))
        return self._fields

    def deserialize(self, de: Deserializer) -> T:
        return de.deserialize_struct(list(self.fields), self)

    def visit_map(self, access: MapAccess) -> T:
        fields = self.fields
        values: Dict[str, Any] = {}
        for key in access:
            try:
                field = fields[key]
            except KeyError:
                LOGGER.debug('Skipping unknown key "{}" in {}', key, _path_str(access))
                access.skip_value()
                continue
            if field.alias in values:
                LOGGER.debug('Key "{}" is repeated in {}, using the last value.', key, _path_str(access))
            values[field.alias] = access.next_value(field.shape)

        for field in fields.values():
            if field.alias not in values and not field.has_default:
                values[field.alias] = field.shape.missing(access, field.key)
        return self.cls(**values)


class TaggedEnum(Shape[T]):
    """One of several variants, selected by name.

    Each variant has a payload shape, or None if it has no payload. When read, ``build`` is
    called with the variant name and payload to produce the result.
    """
    def __init__(
        self,
        variants: MappingT[str, OptionalT[Shape[Any]]],
        build: Callable[[str, Any], T],
    ) -> None:
        self.variants = dict(variants)
        self.build = build

    def __repr__(self) -> str:
        return f'TaggedEnum({self.variants!r})'

    @property
    def expecting(self) -> str:  # type: ignore[override]
        return 'one of ' + ', '.join(f'"{name}"' for name in self.variants)

    def deserialize(self, de: Deserializer) -> T:
        return de.deserialize_enum(list(self.variants), self)

    def visit_enum(self, access: EnumAccess) -> T:
        shape = self.variants[access.variant]
        if shape is None:
            access.unit_variant()
            return self.build(access.variant, None)
        return self.build(access.variant, access.newtype_variant(shape))


class AnyValue(Shape[Value]):
    """Untyped data: a string for values, or a :py:class:`~vdf_reader.tree.Block`."""
    expecting = 'any value'

    def deserialize(self, de: Deserializer) -> Value:
        return de.deserialize_any(self)

    def visit_str(self, value: str, de: Deserializer) -> Value:
        return value

    def visit_map(self, access: MapAccess) -> Value:
        block = Block()
        for key in access:
            block.append(key, access.next_value(self))
        return block


def _path_str(access: MapAccess) -> str:
    return '.'.join(access.path) or 'the root block'


def _attrs_fields(cls: type) -> Dict[str, StructField]:
    """Compute the fields for an attrs class."""
    attrs.resolve_types(cls)
    result: Dict[str, StructField] = {}
    for field in attrs.fields(cls):
        if not field.init:
            continue
        key = field.metadata.get('vdf_name', field.name)
        if field.type is None:
            raise TypeError(f'Field {cls.__name__}.{field.name} has no type annotation!')
        result[key] = StructField(
            key=key,
            alias=field.alias,
            shape=shape_of(field.type),
            has_default=field.default is not attrs.NOTHING,
        )
    return result


def _variant_name(cls: type) -> str:
    name = getattr(cls, 'vdf_name', None)
    return name if isinstance(name, str) else cls.__name__


_SHAPE_CACHE: Dict[object, Shape[Any]] = {}
_SIMPLE: Dict[object, Shape[Any]] = {
    str: String(),
    int: Integer(),
    float: Float(),
    bool: Boolean(),
    type(None): Unit(),
    None: Unit(),
    Any: AnyValue(),
    Block: AnyValue(),
}
_SEQUENCES = {list, collections.abc.Sequence, collections.abc.MutableSequence}
_MAPPINGS = {dict, collections.abc.Mapping, collections.abc.MutableMapping}


def shape_of(tp: Any) -> Shape[Any]:
    """Produce the shape for the given type annotation.

    Shapes are passed through unchanged.
    """
    if isinstance(tp, Shape):
        return tp
    try:
        return _SIMPLE[tp]
    except (KeyError, TypeError):  # TypeError for unhashable annotations.
        pass
    try:
        return _SHAPE_CACHE[tp]
    except KeyError:
        pass
    except TypeError:
        return _compute_shape(tp)
    shape = _SHAPE_CACHE[tp] = _compute_shape(tp)
    return shape


def _compute_shape(tp: Any) -> Shape[Any]:
    """Produce a shape that isn't cached."""
    # Unparameterised containers are their own origin.
    origin = get_origin(tp) or tp
    args = get_args(tp)

    if origin is Union:
        members = [arg for arg in args if arg is not type(None)]
        if len(members) == 1:
            inner = shape_of(members[0])
        else:
            inner = _union_shape(tp, members)
        if len(members) < len(args):
            return Optional(inner)
        return inner

    if origin in _SEQUENCES:
        return Sequence(shape_of(args[0]) if args else AnyValue())
    if origin is tuple:
        if not args:
            return Sequence(AnyValue(), tuple)
        if len(args) == 2 and args[1] is Ellipsis:
            return Sequence(shape_of(args[0]), tuple)
        return Tuple(*map(shape_of, args))
    if origin in _MAPPINGS:
        if args and args[0] is not str:
            raise TypeError(f'Only string keys are supported, not {tp!r}')
        return Mapping(shape_of(args[1]) if args else AnyValue())

    if isinstance(tp, type):
        if issubclass(tp, enum.Enum):
            members = {
                member.value if isinstance(member.value, str) else member.name: member
                for member in tp
            }
            return TaggedEnum(dict.fromkeys(members), lambda name, _: members[name])
        if attrs.has(tp):
            return Struct.from_attrs(tp)
    raise TypeError(f'Cannot deserialise the type {tp!r}')


def _union_shape(tp: Any, members: List[Any]) -> Shape[Any]:
    """A union of attrs classes is a tagged enum."""
    variants: Dict[str, OptionalT[Shape[Any]]] = {}
    for member in members:
        if not isinstance(member, type) or not attrs.has(member):
            raise TypeError(f'Unions may only contain attrs classes, not {member!r} in {tp!r}')
        name = _variant_name(member)
        variants[name] = shape_of(member)
    return TaggedEnum(variants, lambda name, payload: payload)
