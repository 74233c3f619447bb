"""
Archive sinks and sources.

Predictors persist themselves through a :class:`DataSink` and restore
themselves from a :class:`DataSource`, addressing files by ``/``-separated
entry names. Two backends are provided: a plain directory on disk and a
single zip archive.
"""

import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

logger = logging.getLogger(__name__)


def join_entry(*parts: str) -> str:
    """Join entry name parts with ``/``, skipping empty parts."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class DataSink(ABC):
    """Write side of an archive. At most one entry is open at a time."""

    @abstractmethod
    def create_directory(self, name: str) -> None:
        ...

    @abstractmethod
    def get_output_stream(self, entry: str) -> BinaryIO:
        """Open ``entry`` for writing, closing any previously open entry."""

    @abstractmethod
    def close_entry(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class DataSource(ABC):
    """Read side of an archive."""

    @abstractmethod
    def get_input_stream(self, entry: str) -> BinaryIO:
        """Open ``entry`` for reading; raises FileNotFoundError if missing."""

    @abstractmethod
    def has_entry(self, entry: str) -> bool:
        ...

    @abstractmethod
    def entries(self) -> Iterator[str]:
        ...

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


# ============================================================================
# Directory backend
# ============================================================================


class DirectorySink(DataSink):
    """Writes entries as files below ``root``."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._current: Optional[BinaryIO] = None

    def create_directory(self, name):
        (self.root / name).mkdir(parents=True, exist_ok=True)

    def get_output_stream(self, entry):
        self.close_entry()
        path = self.root / entry
        path.parent.mkdir(parents=True, exist_ok=True)
        self._current = open(path, "wb")
        return self._current

    def close_entry(self):
        if self._current is not None:
            self._current.close()
            self._current = None

    def close(self):
        self.close_entry()


class DirectorySource(DataSource):
    """Reads entries from files below ``root``."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        if not self.root.is_dir():
            raise FileNotFoundError(f"No such directory: {self.root}")

    def get_input_stream(self, entry):
        return open(self.root / entry, "rb")

    def has_entry(self, entry):
        return (self.root / entry).is_file()

    def entries(self):
        for path in sorted(self.root.rglob("*")):
            if path.is_file():
                yield path.relative_to(self.root).as_posix()


# ============================================================================
# Zip backend
# ============================================================================


class ZipSink(DataSink):
    """Writes entries into a single (deflated) zip archive."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._zip = zipfile.ZipFile(self.path, "w", compression=zipfile.ZIP_DEFLATED)
        self._current: Optional[BinaryIO] = None
        self._directories = set()

    def create_directory(self, name):
        name = name.strip("/") + "/"
        if name != "/" and name not in self._directories:
            self.close_entry()
            self._zip.writestr(name, b"")
            self._directories.add(name)

    def get_output_stream(self, entry):
        self.close_entry()
        self._current = self._zip.open(entry, "w")
        return self._current

    def close_entry(self):
        if self._current is not None:
            self._current.close()
            self._current = None

    def close(self):
        self.close_entry()
        self._zip.close()
        logger.debug("Wrote archive %s", self.path)


class ZipSource(DataSource):
    """Reads entries from a zip archive."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._zip = zipfile.ZipFile(self.path, "r")
        self._names = set(self._zip.namelist())

    def get_input_stream(self, entry):
        if entry not in self._names:
            raise FileNotFoundError(f"No entry '{entry}' in {self.path}")
        return self._zip.open(entry, "r")

    def has_entry(self, entry):
        return entry in self._names

    def entries(self):
        for name in self._zip.namelist():
            if not name.endswith("/"):
                yield name

    def close(self):
        self._zip.close()


# ============================================================================
# Helpers
# ============================================================================


def open_sink(path: Union[str, Path]) -> DataSink:
    """Zip sink for ``*.zip`` paths, directory sink otherwise."""
    return ZipSink(path) if str(path).lower().endswith(".zip") else DirectorySink(path)


def open_source(path: Union[str, Path]) -> DataSource:
    """Zip source for ``*.zip`` paths, directory source otherwise."""
    return ZipSource(path) if str(path).lower().endswith(".zip") else DirectorySource(path)


def write_bytes(sink: DataSink, entry: str, data: bytes) -> None:
    stream = sink.get_output_stream(entry)
    stream.write(data)
    sink.close_entry()


def read_bytes(source: DataSource, entry: str) -> bytes:
    with source.get_input_stream(entry) as stream:
        return stream.read()
