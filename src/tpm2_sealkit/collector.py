# SPDX-License-Identifier: BSD-2
"""
Ordered collection of the errors met while running one command.

A command keeps going after a failure far enough to release what it
acquired, and the failures of that cleanup are reported next to the one that
caused it instead of replacing it.
"""
import contextlib
import logging
import sys
from typing import Callable, Iterator, List, TextIO, Tuple

from .exceptions import SealkitError

logger = logging.getLogger(__name__)


class ErrorCollector:
    def __init__(self):
        self._errors: List[SealkitError] = []

    def __len__(self) -> int:
        return len(self._errors)

    def __iter__(self) -> Iterator[SealkitError]:
        return iter(self._errors)

    def __str__(self):
        return "%s(%s)" % (
            self.__class__.__qualname__,
            ", ".join(repr(str(e)) for e in self._errors),
        )

    @property
    def errors(self) -> Tuple[SealkitError, ...]:
        return tuple(self._errors)

    @property
    def exit_code(self) -> int:
        return 1 if self._errors else 0

    def append(self, error: SealkitError) -> None:
        logger.debug("collected %s: %s", type(error).__name__, error)
        self._errors.append(error)

    def report(self, stream: TextIO = None) -> None:
        """Print every collected error, oldest first."""
        if stream is None:
            stream = sys.stderr
        for error in self._errors:
            print(f"Error: {error}", file=stream)

    @contextlib.contextmanager
    def operation(self) -> Iterator[Callable[..., None]]:
        """Run an operation body with deferred cleanups.

        Yields a ``defer(func, *args, **kwargs)`` callable. When the body
        raises a SealkitError it is collected first, then the deferred
        callables run in reverse registration order. A SealkitError raised by
        a cleanup is collected and does not stop the remaining cleanups.
        Anything that is not a SealkitError propagates; when a cleanup raises
        one, the remaining cleanups still run before it is re-raised.
        """
        cleanups = []
        failure = None

        def defer(func, *args, **kwargs):
            cleanups.append((func, args, kwargs))

        try:
            yield defer
        except SealkitError as error:
            self.append(error)
        finally:
            while cleanups:
                func, args, kwargs = cleanups.pop()
                try:
                    func(*args, **kwargs)
                except SealkitError as error:
                    self.append(error)
                except Exception as error:
                    if failure is None:
                        failure = error
            if failure is not None:
                raise failure
