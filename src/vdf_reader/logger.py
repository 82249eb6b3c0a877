"""
Wrapper around logging, used by the rest of the package and the scripts.

Messages are formatted with str.format() instead of %, only if the message is actually emitted.
Wrapping code in :py:func:`context()` tags every log produced inside, which is used to show which
file was being read::

    LOGGER = get_logger(__name__)
    with context('weapon.vdf'):
        LOGGER.warning('Unknown key "{}"', key)  # [W] (weapon.vdf) Unknown key "..."
"""
from typing import (
    TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type, Union, cast,
)
from pathlib import Path
from types import TracebackType
import contextlib
import contextvars
import logging
import os
import sys

from vdf_reader import StringPath


__all__ = ['LoggerAdapter', 'get_handler', 'get_logger', 'init_logging', 'context', 'DEBUG_ENV']
#: If this environment variable is set to ``1``, debug logs are shown on the console.
DEBUG_ENV = 'VDF_READER_DEBUG'
#: The number of old log files kept by :py:func:`get_handler()`.
BACKUP_COUNT = 3
# The labels of the enclosing context() calls, outermost first.
CTX_STACK: 'contextvars.ContextVar[Tuple[str, ...]]' = contextvars.ContextVar(
    'vdf_reader_log_context', default=(),
)


class LogMessage:
    """Delays formatting with str.format() until the message is needed.

    Continuation lines are indented, so multi-line messages remain grouped together.
    """
    def __init__(self, fmt: str, args: Tuple[object, ...], kwargs: Dict[str, object]) -> None:
        self.fmt = fmt
        self.args = args
        self.kwargs = kwargs
        self._text: Optional[str] = None

    @property
    def text(self) -> str:
        """The formatted message. Braces are left alone if there were no arguments."""
        if self._text is None:
            if self.args or self.kwargs:
                self._text = self.fmt.format(*self.args, **self.kwargs)
            else:
                self._text = self.fmt
        return self._text

    def __str__(self) -> str:
        lines = self.text.split('\n')
        if len(lines) == 1:
            return lines[0]
        if lines[-1].isspace():
            lines.pop()
        # | first
        # | second
        # |___
        return '\n | '.join(lines) + '\n |___\n'


_ExcInfo = Union[
    None, bool, BaseException,
    Tuple[Type[BaseException], BaseException, Optional[TracebackType]],
    Tuple[None, None, None],
]
if TYPE_CHECKING:  # Only generic in stubs.
    _AdapterBase = logging.LoggerAdapter[logging.Logger]
else:
    _AdapterBase = logging.LoggerAdapter


class LoggerAdapter(_AdapterBase):
    """Formats messages with :py:class:`LogMessage`, and records the current context."""
    logger: logging.Logger

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def log(
        self,
        level: int,
        msg: Any,
        *args: Any,
        exc_info: _ExcInfo = None,
        stack_info: bool = False,
        extra: Optional[Mapping[str, object]] = None,
        stacklevel: int = 0,
        **kwargs: Any,
    ) -> None:
        """Log a message, passing ``args`` and ``kwargs`` to str.format()."""
        if not self.isEnabledFor(level):
            return
        labels = CTX_STACK.get()
        record_extra = dict(extra or {})
        record_extra['vdf_context'] = f' ({", ".join(labels)})' if labels else ''
        if sys.version_info >= (3, 10):
            # Skip the frames of this adapter, so the caller is reported.
            stacklevel += 2
        # noinspection PyProtectedMember
        self.logger._log(
            level,
            LogMessage(str(msg), args, kwargs),
            (),
            exc_info=exc_info,
            extra=record_extra,
            stack_info=stack_info,
            stacklevel=stacklevel,
        )

    def __getattr__(self, attr: str) -> Any:
        """Delegate unknown methods to the logger."""
        return getattr(self.logger, attr)


class Formatter(logging.Formatter):
    """Fills in an empty context for records produced by other libraries."""
    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'vdf_context'):
            record.vdf_context = ''
        return super().format(record)


def get_handler(filename: StringPath, backups: int = BACKUP_COUNT) -> logging.FileHandler:
    """Produce a handler writing to the given file.

    Any previous log is kept, renaming ``name.log`` to ``name.1.log``, ``name.1.log`` to
    ``name.2.log`` and so on, discarding the oldest.
    """
    path = Path(filename)
    ext = ''.join(path.suffixes)

    def numbered(num: int) -> Path:
        return path.with_suffix(f'.{num}{ext}' if num else ext)

    try:
        numbered(backups).unlink(missing_ok=True)
        for num in reversed(range(backups)):
            if numbered(num).exists():
                numbered(num).replace(numbered(num + 1))
    except PermissionError:
        # Held open by another process, we'll just overwrite the file.
        pass
    return logging.FileHandler(path, mode='w', encoding='utf8')


def _console_handlers(formatter: logging.Formatter) -> Iterator[logging.Handler]:
    """Produce handlers for stdout and stderr, if they exist.

    Warnings and errors go to stderr. Debug messages are only shown if :py:data:`DEBUG_ENV`
    is set.
    """
    if sys.stdout is not None:
        stdout = logging.StreamHandler(sys.stdout)
        stdout.setFormatter(formatter)
        stdout.setLevel(logging.DEBUG if os.environ.get(DEBUG_ENV) == '1' else logging.INFO)
        if sys.stderr is not None:
            stdout.addFilter(lambda record: record.levelno < logging.WARNING)
        yield stdout
    if sys.stderr is not None:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(formatter)
        stderr.setLevel(logging.WARNING)
        yield stderr


def init_logging(
    filename: Optional[StringPath] = None,
    main_logger: str = '',
) -> logging.Logger:
    """Set up handlers on the root logger, then return a logger for the application.

    :param filename: If this is set, all logs will be written to this file as well, with
      additional detail.
    :param main_logger: The name of the logger to return, inside the ``vdf_reader`` namespace.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    handlers: List[logging.Handler] = []
    if filename is not None:
        os.makedirs(os.path.dirname(os.path.abspath(filename)), exist_ok=True)
        file_handler = get_handler(filename)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(Formatter(
            '[{levelname}]{vdf_context} {module}.{funcName}(): {message}',
            style='{',
        ))
        handlers.append(file_handler)
    # Only the first letter of the level on the console.
    handlers.extend(_console_handlers(Formatter('[{levelname[0]}]{vdf_context} {message}', style='{')))
    for handler in handlers:
        root.addHandler(handler)
    return get_logger(main_logger)


def get_logger(name: str = '') -> logging.Logger:
    """Get the named logger, inside the ``vdf_reader`` namespace.

    Both ``get_logger('de')`` and ``get_logger('vdf_reader.de')`` produce the same logger.
    The result uses :external:py:meth:`str.format()` style messages.
    """
    if name.startswith('vdf_reader.'):
        name = name[len('vdf_reader.'):]
    log = logging.getLogger(f'vdf_reader.{name}' if name else 'vdf_reader')
    return cast(logging.Logger, LoggerAdapter(log))


@contextlib.contextmanager
def context(name: str) -> Iterator[str]:
    """Include this label in every log message produced inside the ``with`` statement."""
    token = CTX_STACK.set((*CTX_STACK.get(), name))
    try:
        yield name
    finally:
        CTX_STACK.reset(token)
