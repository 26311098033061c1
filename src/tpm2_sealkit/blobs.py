# SPDX-License-Identifier: BSD-2
"""
Sources and sinks for the byte strings the commands consume and produce.
"""
import logging
import os
from typing import Optional

from .exceptions import InputError, StorageError

logger = logging.getLogger(__name__)


class Blob:
    """Bytes kept somewhere outside the TPM."""

    def read(self) -> bytes:
        raise NotImplementedError()

    def write(self, data: bytes) -> None:
        raise NotImplementedError()


class FileBlob(Blob):
    """A file on disk, written with owner only permissions.

    Args:
        path (str): The file path.
        mode (int): Permission bits applied on write. Defaults to 0o600.
    """

    def __init__(self, path: str, mode: int = 0o600):
        self.path = path
        self.mode = mode

    def read(self) -> bytes:
        try:
            with open(self.path, "rb") as f:
                return f.read()
        except OSError as e:
            raise InputError(f"couldn't read from file {self.path!r}: {e}") from e

    def write(self, data: bytes) -> None:
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.mode)
            with os.fdopen(fd, "wb") as f:
                # O_CREAT does not touch the mode of a file that already exists
                os.fchmod(f.fileno(), self.mode)
                f.write(data)
        except OSError as e:
            raise StorageError(f"couldn't write to file {self.path!r}: {e}") from e
        logger.debug("wrote %d bytes to %s", len(data), self.path)

    def __repr__(self):
        return f"{self.__class__.__qualname__}({self.path!r})"


class MemoryBlob(Blob):
    """Bytes held in memory, for library callers that do not want files."""

    def __init__(self, data: Optional[bytes] = None, name: str = "memory"):
        self.data = data
        self.name = name

    def read(self) -> bytes:
        if self.data is None:
            raise InputError(f"no data in {self.name}")
        return self.data

    def write(self, data: bytes) -> None:
        self.data = bytes(data)

    def __repr__(self):
        return f"{self.__class__.__qualname__}({self.name!r})"
