"""Inspect KeyValues files, showing how they are parsed.

Modes:

* ``tokens``: print each token with its position.
* ``events``: print the block/value events produced by the parser.
* ``tree``: print the parsed tree, indented.
* ``check``: parse every ``.vdf``, ``.vmt`` and ``.res`` file in the given folders, and report
  any errors.
"""
from typing import Iterator, List
import argparse
import os
import sys

from vdf_reader import logger
from vdf_reader.parser import EnterBlock, EventParser, LeaveBlock
from vdf_reader.tokenizer import Tokenizer, TokenSyntaxError
from vdf_reader.tree import Block


LOGGER = logger.get_logger('dump')
EXTENSIONS = ('.vdf', '.vmt', '.res')


def dump_tokens(filename: str, strict: bool) -> None:
    """Print each token in the file."""
    with open(filename, encoding='utf8') as f:
        tok = Tokenizer(f, filename, strict_escapes=strict)
        for token, value in tok:
            if token.has_value:
                print(f'{tok.pos} {token.name} {value!r}')
            else:
                print(f'{tok.pos} {token.name}')


def dump_events(filename: str, strict: bool) -> None:
    """Print each structural event in the file."""
    with open(filename, encoding='utf8') as f:
        parser = EventParser.from_str(f, filename, strict_escapes=strict)
        for event in parser:
            if isinstance(event, LeaveBlock):
                print(f'{"  " * parser.depth}}}')
            elif isinstance(event, EnterBlock):
                print(f'{"  " * (parser.depth - 1)}"{event.key}" {{')
            else:
                print(f'{"  " * parser.depth}"{event.key}" "{event.value}"')


def format_tree(block: Block, indent: str = '') -> Iterator[str]:
    """Produce the lines to display a tree."""
    for key, value in block:
        if isinstance(value, Block):
            yield f'{indent}{key}:'
            yield from format_tree(value, indent + '  ')
        else:
            yield f'{indent}{key} = {value!r}'


def dump_tree(filename: str, strict: bool) -> None:
    """Print the tree for the file."""
    with open(filename, encoding='utf8') as f:
        block = Block.parse(f, filename, strict_escapes=strict)
    for line in format_tree(block):
        print(line)


def find_files(paths: List[str]) -> Iterator[str]:
    """Yield all the files to check, recursing into folders."""
    for path in paths:
        if os.path.isdir(path):
            for dirpath, dirnames, filenames in os.walk(path):
                dirnames.sort()
                for name in sorted(filenames):
                    if name.casefold().endswith(EXTENSIONS):
                        yield os.path.join(dirpath, name)
        else:
            yield path


def check_files(paths: List[str], strict: bool) -> int:
    """Parse every file, returning the number which failed."""
    success = 0
    failed = 0
    for filename in find_files(paths):
        with logger.context(os.path.basename(filename)):
            try:
                with open(filename, encoding='utf8') as f:
                    Block.parse(f, filename, strict_escapes=strict)
            except (TokenSyntaxError, UnicodeDecodeError) as exc:
                LOGGER.warning('Failed to parse:\n{}', exc)
                failed += 1
            else:
                LOGGER.debug('Parsed successfully.')
                success += 1
    LOGGER.info('Successfully parsed {} files, found errors in {} files.', success, failed)
    return failed


def main(args: List[str]) -> int:
    """Main script."""
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        'mode',
        choices=['tokens', 'events', 'tree', 'check'],
        help='What to display.',
    )
    parser.add_argument(
        '--strict',
        action='store_true',
        help='Treat unknown escape sequences in strings as errors.',
    )
    parser.add_argument(
        '--log',
        metavar='FILE',
        help='Write all logs to this file as well.',
    )
    parser.add_argument(
        'paths',
        nargs='+',
        help='The files to parse. For check mode, folders are searched recursively.',
    )
    result = parser.parse_args(args)
    logger.init_logging(result.log)

    if result.mode == 'check':
        return 1 if check_files(result.paths, result.strict) else 0

    func = {
        'tokens': dump_tokens,
        'events': dump_events,
        'tree': dump_tree,
    }[result.mode]
    for filename in result.paths:
        try:
            func(filename, result.strict)
        except TokenSyntaxError as exc:
            LOGGER.error('Failed to parse {}:\n{}', filename, exc)
            return 1
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
