"""Test deserialising files into typed values."""
from typing import ClassVar, Dict, List, Optional, Tuple, Union
import enum
import math

import attrs
import pytest

from vdf_reader import Block, parse
from vdf_reader.cursor import Cursor
from vdf_reader.de import (
    AmbiguousEnumRootError, DeserializeError, InvalidBooleanError, InvalidNumberError,
    MissingFieldError, NonConsecutiveRepeatedKeyError, TypeMismatchError, UnknownVariantError,
    from_cursor, from_str, from_value,
)
from vdf_reader.parser import UnbalancedBracesError
from vdf_reader.shapes import Integer, Mapping, TaggedEnum
from vdf_reader.tokenizer import Position

from helpers import ExactType


@attrs.frozen
class Repeated:
    key: List[int]
    other: int


@attrs.frozen
class Variant1:
    content: bool


@attrs.frozen
class Variant2:
    other: str


class SpriteOrientation(enum.Enum):
    PARALLEL_UPRIGHT = 'parallel_upright'
    VP_PARALLEL = 'vp_parallel'
    ORIENTED = 'oriented'
    VP_PARALLEL_ORIENTED = 'vp_parallel_oriented'


@attrs.frozen
class Sprite:
    orientation: SpriteOrientation = attrs.field(metadata={'vdf_name': '$spriteorientation'})
    origin: Tuple[float, float] = attrs.field(metadata={'vdf_name': '$spriteorigin'})
    texture: str = attrs.field(metadata={'vdf_name': '$basetexture'})
    no_fullbright: bool = attrs.field(metadata={'vdf_name': '$no_fullbright'})


@attrs.frozen
class LightmappedGeneric:
    base_texture: str = attrs.field(metadata={'vdf_name': '$baseTexture'})
    bumpmap: str = attrs.field(metadata={'vdf_name': '$bumpmap'})
    ssbump: bool = attrs.field(metadata={'vdf_name': '$ssbump'})
    keywords: str = attrs.field(metadata={'vdf_name': '%keywords'})
    detailscale: float = attrs.field(metadata={'vdf_name': '$detailscale'})
    detailblendmode: int = attrs.field(metadata={'vdf_name': '$detailblendmode'})


@attrs.frozen
class Bar:
    vdf_name: ClassVar[str] = 'bar'
    a: bool


@attrs.frozen
class Foo:
    vdf_name: ClassVar[str] = 'foo'
    a: bool


@attrs.frozen
class EnumInMap:
    foo: Union[Bar, Foo]


@attrs.frozen
class Item:
    name: str
    count: int = 1


@attrs.frozen
class Inventory:
    owner: str
    items: List[Item] = attrs.field(metadata={'vdf_name': 'item'})
    tags: Dict[str, int] = attrs.Factory(dict)


@attrs.frozen
class Types:
    fixed_array: Tuple[int, int, int]
    flex_array: List[float]
    tuple: Tuple[bool, int]
    empty: None


@attrs.frozen
class Options:
    required: str
    note: Optional[str]
    level: int = 5


MATERIAL = '''\
LightmappedGeneric
{
    "$baseTexture" "concrete/concretefloor033k"
    "$bumpmap" "concrete/concretefloor033k_bump"
    "$ssbump" "1"
    "%keywords" "portal"
    "$detail" "detail/noise_detail_01"
    "$detailscale" "7.74"
    "$detailblendmode" "0"
}
'''


def test_consecutive_sequence() -> None:
    """Consecutive repeated keys form a sequence."""
    assert from_str('key 1 key 2 other 3', Repeated) == Repeated(key=[1, 2], other=3)
    assert from_str('other 3 key 1 key 2 key 3', Repeated) == Repeated(key=[1, 2, 3], other=3)
    assert from_str('key 5 other 3', Repeated) == Repeated(key=[5], other=3)


def test_non_consecutive_failure() -> None:
    """A key which appears again after a different key is an error."""
    with pytest.raises(NonConsecutiveRepeatedKeyError) as exc:
        from_str('key 1 other 3 key 2', Repeated, 'repeat.vdf')
    assert exc.value.path == ('key', )
    assert exc.value.pos == Position(1, 15)
    assert exc.value.file == 'repeat.vdf'


def test_toplevel_struct() -> None:
    """The top level can be read as a struct, without braces."""
    assert from_str('''
    "$spriteorientation" "vp_parallel"
    "$spriteorigin" "[0.50 0.50]"
    "$basetexture" "sprites/light_glow03"
    "$no_fullbright" "1"
    ''', Sprite) == Sprite(
        orientation=SpriteOrientation.VP_PARALLEL,
        origin=(0.5, 0.5),
        texture='sprites/light_glow03',
        no_fullbright=True,
    )


def test_tagged_enum_root() -> None:
    """A single top-level entry selects the variant."""
    result = from_str('"Variant1" { content 1 }', Union[Variant1, Variant2])
    assert result == Variant1(content=True)
    assert result.content == ExactType(True)
    assert from_str('Variant2 { other "text" }', Union[Variant1, Variant2]) == Variant2('text')


def test_tagged_enum_ambiguous() -> None:
    """Two top-level entries can't select a variant."""
    with pytest.raises(AmbiguousEnumRootError) as exc:
        from_str('"Variant1" { content 1 }\n"Variant2" { other x }', Union[Variant1, Variant2])
    assert exc.value.path == ()
    assert exc.value.pos == Position(2, 1)

    # Further entries are reported even if the first is invalid.
    with pytest.raises(AmbiguousEnumRootError) as exc:
        from_str('"Unknown" { }\n"Variant1" { content 1 }', Union[Variant1, Variant2])
    assert exc.value.pos == Position(2, 1)
    assert isinstance(exc.value.__context__, UnknownVariantError)

    with pytest.raises(AmbiguousEnumRootError) as exc:
        from_str('"Variant1" { }\n"Variant2" { other x }', Union[Variant1, Variant2])
    assert exc.value.pos == Position(2, 1)
    assert exc.value.mess == (
        'Expected only the variant "Variant1", but found another entry "Variant2"!'
    )

    with pytest.raises(AmbiguousEnumRootError):
        from_str(
            '"Variant1" { content 1 other { a b } }\n"Variant2" { }',
            Union[Variant1, Variant2],
        )
    with pytest.raises(AmbiguousEnumRootError):
        from_str(
            '"Variant1" { content "maybe" extra 1 }\nVariant2 { }',
            Union[Variant1, Variant2],
        )

    with pytest.raises(AmbiguousEnumRootError):
        from_str('', Union[Variant1, Variant2])
    with pytest.raises(AmbiguousEnumRootError):
        from_str('// Just a comment', Union[Variant1, Variant2])


def test_tagged_enum_unknown() -> None:
    """The variant must be one of the known names, matching case."""
    with pytest.raises(UnknownVariantError) as exc:
        from_str('"Unknown" { }', Union[Variant1, Variant2])
    assert exc.value.mess == 'Unknown variant "Unknown", expected one of "Variant1", "Variant2".'
    assert exc.value.path == ('Unknown', )

    with pytest.raises(UnknownVariantError):
        from_str('"variant1" { content 1 }', Union[Variant1, Variant2])


def test_material() -> None:
    """Read a material, ignoring unknown keys."""
    assert from_str(MATERIAL, Union[LightmappedGeneric, Sprite]) == LightmappedGeneric(
        base_texture='concrete/concretefloor033k',
        bumpmap='concrete/concretefloor033k_bump',
        ssbump=True,
        keywords='portal',
        detailscale=7.74,
        detailblendmode=0,
    )


def test_enum_in_map() -> None:
    """Enums can be values inside a block."""
    assert from_str('foo { bar { a 1 } }', EnumInMap) == EnumInMap(Bar(a=True))
    assert from_str('foo { foo { a 0 } }', EnumInMap) == EnumInMap(Foo(a=False))
    with pytest.raises(UnknownVariantError) as exc:
        from_str('foo { baz { a 0 } }', EnumInMap)
    assert exc.value.path == ('foo', 'baz')


def test_unit_variants() -> None:
    """Variants without a payload may be a plain value, or an empty value or block."""
    shape = TaggedEnum({'Count': Integer(), 'Nothing': None}, lambda name, payload: (name, payload))
    assert from_str('Count 5', shape) == ('Count', 5)
    assert from_str('Count "-12"', shape) == ('Count', -12)
    assert from_str('Nothing ""', shape) == ('Nothing', None)
    assert from_str('Nothing {}', shape) == ('Nothing', None)

    with pytest.raises(TypeMismatchError) as exc:
        from_str('Nothing "something"', shape)
    assert exc.value.mess == 'Expected an empty value, but found the value "something"!'
    with pytest.raises(TypeMismatchError):
        from_str('Nothing { key value }', shape)


def test_plain_variant_name() -> None:
    """A value may name a variant, only if it has no payload."""
    shape = Mapping(TaggedEnum({'Count': Integer(), 'Nothing': None}, lambda name, payload: name))
    assert from_str('kind Nothing', shape) == {'kind': 'Nothing'}
    with pytest.raises(TypeMismatchError) as exc:
        from_str('kind Count', shape)
    assert exc.value.mess == 'The variant "Count" requires a value, but was given as a plain name!'
    assert exc.value.path == ('kind', )


def test_python_enum() -> None:
    """Python enums are selected by value, or name if the values are not strings."""
    class Level(enum.Enum):
        LOW = 1
        HIGH = 2

    @attrs.frozen
    class Config:
        level: Level
        orientation: SpriteOrientation

    assert from_str('level HIGH orientation oriented', Config) == Config(
        Level.HIGH, SpriteOrientation.ORIENTED,
    )
    with pytest.raises(UnknownVariantError) as exc:
        from_str('level HIGH orientation sideways', Config)
    assert exc.value.path == ('orientation', )


def test_bool_coercion() -> None:
    """Only 0 and 1 are valid booleans."""
    @attrs.frozen
    class Flag:
        flag: bool

    assert from_str('flag 1', Flag).flag == ExactType(True)
    assert from_str('flag "0"', Flag).flag == ExactType(False)
    for text in ['true', 'false', '2', '', '01', 'yes']:
        with pytest.raises(InvalidBooleanError) as exc:
            from_str(f'flag "{text}"', Flag, 'flag.vdf')
        assert exc.value.mess == f'Expected "0" or "1", but found "{text}"!'
        assert exc.value.path == ('flag', )
        assert exc.value.pos == Position(1, 1)


def test_numbers() -> None:
    """Numbers are parsed strictly."""
    @attrs.frozen
    class Numbers:
        whole: int
        decimal: float

    result = from_str('whole "-42" decimal 7.5', Numbers)
    assert result.whole == ExactType(-42)
    assert result.decimal == ExactType(7.5)
    assert from_str('whole +3 decimal 1e3', Numbers) == Numbers(3, 1000.0)
    assert from_str('whole 0 decimal .5', Numbers) == Numbers(0, 0.5)
    assert from_str('whole 0 decimal 12', Numbers).decimal == ExactType(12.0)

    for whole in ['1.5', ' 12', 'twelve', '', '0x10']:
        with pytest.raises(InvalidNumberError) as exc:
            from_str(f'whole "{whole}" decimal 1', Numbers)
        assert exc.value.path == ('whole', )
    assert from_str('whole 1 decimal inf', Numbers).decimal == float('inf')
    assert from_str('whole 1 decimal -Infinity', Numbers).decimal == float('-inf')
    assert math.isnan(from_str('whole 1 decimal NaN', Numbers).decimal)

    for decimal in ['infinite', 'nan0', '1,5', '.', '1e', ' 1']:
        with pytest.raises(InvalidNumberError) as exc:
            from_str(f'whole 1 decimal "{decimal}"', Numbers)
        assert exc.value.path == ('decimal', )


def test_arrays() -> None:
    """Sequences and tuples, either in brackets or as repeated keys."""
    assert from_str('''
    fixed_array "[1 2 3]"
    flex_array "[1.5 2 2.5]"
    tuple "[1 12]"
    empty ""
    ''', Types) == Types(
        fixed_array=(1, 2, 3),
        flex_array=[1.5, 2.0, 2.5],
        tuple=(True, 12),
        empty=None,
    )
    assert from_str('''
    fixed_array 1
    fixed_array 2
    fixed_array 3
    flex_array 4
    tuple "[0 8]"
    empty {}
    ''', Types) == Types((1, 2, 3), [4.0], (False, 8), None)


def test_tuple_length() -> None:
    """Tuples must have exactly the right number of values."""
    with pytest.raises(TypeMismatchError) as exc:
        from_str('fixed_array "[1 2]" flex_array "[]" tuple "[0 1]" empty ""', Types)
    assert exc.value.mess == 'Expected 3 elements, but found 2!'
    assert exc.value.path == ('fixed_array', )

    with pytest.raises(TypeMismatchError) as exc:
        from_str('fixed_array "[1 2 3 4]" flex_array "[]" tuple "[0 1]" empty ""', Types)
    assert exc.value.mess == 'Expected 3 elements, but found more!'

    with pytest.raises(TypeMismatchError) as exc:
        from_str('fixed_array 1 fixed_array 2 flex_array "[]" tuple "[0 1]" empty ""', Types)
    assert exc.value.mess == 'Expected 3 elements, but found 2!'


def test_element_errors() -> None:
    """Errors in elements report the index in the path."""
    with pytest.raises(InvalidNumberError) as exc:
        from_str('fixed_array "[1 two 3]"', Types)
    assert exc.value.path == ('fixed_array', '1')
    with pytest.raises(InvalidNumberError) as exc:
        from_str('flex_array 1 flex_array 2 flex_array three', Types)
    assert exc.value.path == ('flex_array', '2')


def test_block_run() -> None:
    """Repeated blocks form a sequence of structs."""
    result = from_str('''
    "owner" "Gordon"
    "item" { "name" "crowbar" }
    "item" { "name" "medkit" "count" "3" "unused" "value" }
    "tags" { "weapon" "1" "health" "2" }
    ''', Inventory)
    assert result == Inventory(
        owner='Gordon',
        items=[Item('crowbar'), Item('medkit', 3)],
        tags={'weapon': 1, 'health': 2},
    )


def test_nested_struct() -> None:
    """Structs in blocks, and errors inside them."""
    @attrs.frozen
    class Outer:
        inventory: Inventory
        name: str = ''

    assert from_str('inventory { owner "Alyx" item { name gun } } name outer', Outer) == Outer(
        Inventory('Alyx', [Item('gun')]), 'outer',
    )

    with pytest.raises(InvalidNumberError) as exc:
        from_str('inventory { owner "Alyx" item { name gun count lots } }', Outer, 'outer.vdf')
    assert exc.value.path == ('inventory', 'item', '0', 'count')
    assert exc.value.file == 'outer.vdf'
    assert 'Key path: inventory.item.0.count' in str(exc.value)

    with pytest.raises(TypeMismatchError) as exc:
        from_str('inventory "Alyx"', Outer)
    assert exc.value.mess == 'Expected a block for Inventory, but found the value "Alyx"!'
    assert exc.value.path == ('inventory', )


def test_type_mismatch() -> None:
    """Values and blocks can't be swapped."""
    with pytest.raises(TypeMismatchError) as exc:
        from_str('whole { } other 3', Dict[str, int])
    assert exc.value.mess == 'Expected an integer, but found a block!'
    assert exc.value.path == ('whole', )
    assert exc.value.pos == Position(1, 1)


def test_missing_fields() -> None:
    """Required fields must be present, optional ones default to None."""
    with pytest.raises(MissingFieldError) as exc:
        from_str('other 3', Repeated)
    assert exc.value.path == ('key', )
    assert exc.value.pos is None
    assert exc.value.mess == 'Missing required key "key"!'

    assert from_str('required yes', Options) == Options('yes', None, 5)
    assert from_str('level 2 note "hi" required no', Options) == Options('no', 'hi', 2)
    with pytest.raises(MissingFieldError):
        from_str('note "hi"', Options)


def test_duplicate_keys() -> None:
    """Outside of sequences, the last value is used."""
    assert from_str('required a required b', Options) == Options('b', None, 5)
    assert from_str('a 1 b 2 a 3', Dict[str, int]) == {'a': 3, 'b': 2}


def test_toplevel_sequence() -> None:
    """A sequence at the top level uses every value, ignoring the keys."""
    assert from_str('a 1 b 2 c 3', List[int]) == [1, 2, 3]
    assert from_str('', List[int]) == []
    assert from_str('1 "x" 2 "y"', Tuple[str, str]) == ('x', 'y')


def test_any_value() -> None:
    """Untyped data is read as strings and blocks."""
    assert from_str('a 1 b { c 2 c 3 }', Dict[str, Block]) == {
        'a': '1',
        'b': Block([('c', '2'), ('c', '3')]),
    }
    assert from_str('a 1 a 2', Block) == Block([('a', '1'), ('a', '2')])


def test_syntax_error_after_value() -> None:
    """The whole text is checked for errors."""
    with pytest.raises(UnbalancedBracesError):
        from_str('key 1 other 2 }', Repeated)
    with pytest.raises(UnbalancedBracesError):
        from_str('other 2 key 1 extra { } }', Repeated)


def test_from_value() -> None:
    """An already parsed tree can be deserialised."""
    tree = parse('key 1 key 2 other 3')
    assert from_value(tree, Repeated) == Repeated([1, 2], 3)
    with pytest.raises(NonConsecutiveRepeatedKeyError):
        from_value(parse('key 1 other 3 key 2'), Repeated)


def test_from_cursor() -> None:
    """Part of a file can be deserialised."""
    cursor = Cursor.from_str('skipped { "bad" } config { key 4 other 5 } trailing value')
    assert cursor.peek_key() == 'skipped'
    cursor.skip()
    with cursor.enter() as child:
        assert from_cursor(child, Repeated) == Repeated([4], 5)
    assert cursor.read_entry() == ('trailing', 'value')


def test_errors_are_deserialize_errors() -> None:
    """All the errors can be caught together."""
    for kind in [
        MissingFieldError, InvalidNumberError, InvalidBooleanError,
        NonConsecutiveRepeatedKeyError, UnknownVariantError, AmbiguousEnumRootError,
        TypeMismatchError,
    ]:
        assert issubclass(kind, DeserializeError)
