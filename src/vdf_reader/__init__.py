"""Streaming reader for Valve's KeyValues (VDF) text format.

The text is processed in layers: :py:mod:`~vdf_reader.tokenizer` splits it into tokens,
:py:mod:`~vdf_reader.parser` converts those into block/value events, and
:py:class:`~vdf_reader.cursor.Cursor` allows walking those events on demand. On top of that,
:py:mod:`~vdf_reader.de` maps the entries onto typed values, and :py:mod:`~vdf_reader.tree`
builds a simple tree for when all the data is needed.
"""
from typing import Union
from typing_extensions import TypeAlias
import os as _os


__version__ = '0.3.0'

__all__ = [
    '__version__', 'StringPath',
    'Token', 'Tokenizer', 'TokenSyntaxError', 'Position',
    'EventParser', 'EnterBlock', 'LeaveBlock', 'Scalar', 'Statement',
    'Cursor', 'DeserializeError',
    'from_str', 'from_value', 'from_cursor',
    'Block', 'NoKeyError', 'parse',

    # Submodules:
    'cursor', 'de', 'logger', 'parser', 'shapes', 'tokenizer', 'tree',  # pyright: ignore
]

StringPath: TypeAlias = Union[str, '_os.PathLike[str]']


# Import these, so people can reference 'vdf_reader.Cursor' instead of 'vdf_reader.cursor.Cursor'.
# Must be done after StringPath is defined, since the submodules use it.
# isort: off
from vdf_reader.tokenizer import Position, Token, Tokenizer, TokenSyntaxError
from vdf_reader.parser import EnterBlock, EventParser, LeaveBlock, Scalar, Statement
from vdf_reader.cursor import Cursor, DeserializeError
from vdf_reader.de import from_cursor, from_str, from_value
from vdf_reader.tree import Block, NoKeyError, parse
