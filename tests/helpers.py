"""Helpers for performing tests."""
from typing import Iterable, Tuple, Union
from itertools import tee, zip_longest

from dirty_equals import DirtyEquals
import pytest

from vdf_reader.tokenizer import Token


__all__ = ['ExactType', 'check_tokens']


class ExactType(DirtyEquals[object]):
    """Proxy object which verifies both value and types match."""
    def __init__(self, val: object) -> None:
        super().__init__(val)
        self.compare = val

    def equals(self, other: object) -> bool:
        if isinstance(other, ExactType):
            other = other.compare
        return type(self.compare) is type(other) and self.compare == other


def check_tokens(
    tokenizer: Iterable[Tuple[Token, str]],  # Iterable so a list can be passed to check.
    tokens: Iterable[Union[Token, Tuple[Token, str]]],
) -> None:
    """Check the tokenizer produces the given tokens.

    The arguments are either (token, value) tuples or tokens.
    """
    # Don't show in pytest tracebacks.
    __tracebackhide__ = True

    sentinel = object()
    tokenizer_iter, tokenizer_backup = tee(tokenizer, 2)
    tok_test_iter = iter(tokens)
    for i, (token, comp_token) in enumerate(zip_longest(tokenizer_iter, tok_test_iter, fillvalue=sentinel), start=1):
        if token is sentinel:
            pytest.fail(
                f'{i}: Tokenizer ended early - needed {[comp_token, *tok_test_iter]}, '
                f'got {list(tokenizer_backup)}!'
            )
        if comp_token is sentinel:
            pytest.fail(f'{i}: Tokenizer had too many values - extra = {[token, *tokenizer_iter]}!')
        assert isinstance(token, tuple) and len(token) == 2
        if isinstance(comp_token, tuple):
            comp_type, comp_value = comp_token
            assert token[0] is comp_type and token[1] == comp_value, (  # noqa: PT018
                f"got {token[0]}({token[1]!r}), expected {comp_type}({comp_value!r}) @ pos {i}"
            )
        else:
            assert token[0] is comp_token, f"got {token[0]}({token[1]!r}), expected {comp_token} @ pos {i}"
