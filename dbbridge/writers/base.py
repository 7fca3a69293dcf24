# dbbridge/writers/base.py
"""
Base class for data writers with common file handling.
"""

import logging
import sys
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, TextIO, Union

from ..exceptions import OperationCancelled
from .encoding import BOM

logger = logging.getLogger(__name__)


def sink_name(file) -> str:
    if file is None:
        return 'stdout'
    if isinstance(file, (str, Path)):
        return str(file)
    return getattr(file, 'name', type(file).__name__)


@contextmanager
def open_sink(file: Optional[Union[str, Path, TextIO]] = None, encoding: str = 'utf-8',
              write_bom: bool = False):
    """
    Acquire a text sink for the duration of a write.

    Args:
        file: Path to create/overwrite, an open writable text object, or None for stdout
        encoding: Codec used when the file is opened here
        write_bom: Write a byte order mark first (only for files opened here)

    Yields:
        Writable text object. Files opened here are flushed and closed on exit,
        objects passed in are flushed and left open.
    """
    if file is None or hasattr(file, 'write'):
        file_obj = sys.stdout if file is None else file
        try:
            yield file_obj
        finally:
            file_obj.flush()
        return

    file_obj = open(file, 'w', encoding=encoding, newline='')
    try:
        if write_bom:
            file_obj.write(BOM)
        yield file_obj
    finally:
        file_obj.close()


class BaseWriter(ABC):
    """
    Abstract base class for writers that stream a cursor to a text sink.

    Subclasses implement ``_write_data(file_obj)`` and keep ``self._row_num``
    current as rows are written.

    Parameters
    ----------
    cursor
        Cursor that has already executed its query
    file : str, Path or text file object, optional
        Output destination. None writes to stdout.
    encoding : str, default 'utf-8'
        Codec used when the file is opened by the writer
    write_bom : bool, default False
        Write a byte order mark at the start of a file opened by the writer

    Example
    -------
    ::

        cursor.execute("SELECT * FROM users")
        rows = DelimitedWriter(cursor, 'users.csv').write()
    """

    def __init__(self,
                 cursor,
                 file: Optional[Union[str, Path, TextIO]] = None,
                 encoding: str = 'utf-8',
                 write_bom: bool = False):
        self.cursor = cursor
        self.file = file
        self.encoding = encoding
        self.write_bom = write_bom
        self._row_num = 0

    @property
    def row_count(self) -> int:
        """ Returns the number of rows written."""
        return self._row_num

    @abstractmethod
    def _write_data(self, file_obj) -> None:
        """
        Write the actual data. Subclasses implement format-specific logic.

        Args:
            file_obj: File object to write to
        """
        pass

    def write(self) -> int:
        """
        Main entry point for writing data.

        Returns:
            Number of rows written
        """
        with open_sink(self.file, self.encoding, self.write_bom) as file_obj:
            try:
                self._write_data(file_obj)
            except OperationCancelled as e:
                logger.warning(f"Write to {sink_name(self.file)} cancelled after {e.rows} rows")
                raise
            except Exception as e:
                logger.error(f"Error writing data after {self._row_num} rows: {e}")
                raise
        logger.info(f"Wrote {self._row_num} rows to {sink_name(self.file)}")
        return self._row_num
