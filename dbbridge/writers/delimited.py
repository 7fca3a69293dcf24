# dbbridge/writers/delimited.py
"""
Delimited text export of query results.
"""

import logging
from pathlib import Path
from typing import Any, NamedTuple, Optional, TextIO, Tuple, Union

from ..defaults import settings
from ..exceptions import ConfigurationError, SourceReadError
from ..utils import check_cancelled
from .base import BaseWriter
from .encoding import FileEncoding, resolve_encoding
from .formatting import describe_columns, format_value, sanitize_header

logger = logging.getLogger(__name__)


class FieldDelimiter:
    """
    Field delimiter presets. Any other non-empty string is used as given.

    Example
    -------
    ::
        >>> FieldDelimiter.resolve('pipe')
        '|'
    """
    COMMA = ','
    SEMICOLON = ';'
    PIPE = '|'
    TAB = '\t'

    _NAMES = {'comma': COMMA, 'semicolon': SEMICOLON, 'pipe': PIPE, 'tab': TAB}

    @classmethod
    def values(cls):
        return [cls.COMMA, cls.SEMICOLON, cls.PIPE, cls.TAB]

    @classmethod
    def resolve(cls, delimiter: str) -> str:
        if not isinstance(delimiter, str) or not delimiter:
            raise ConfigurationError(f"Invalid delimiter: {delimiter!r}")
        delimiter = cls._NAMES.get(delimiter.lower(), delimiter)
        if '"' in delimiter or '\r' in delimiter or '\n' in delimiter:
            raise ConfigurationError(f"Delimiter cannot contain quotes or line breaks: {delimiter!r}")
        return delimiter


class LineBreak:
    """Record terminators."""
    CRLF = '\r\n'
    LF = '\n'
    CR = '\r'

    _NAMES = {'crlf': CRLF, 'lf': LF, 'cr': CR}

    @classmethod
    def values(cls):
        return [cls.CRLF, cls.LF, cls.CR]

    @classmethod
    def resolve(cls, line_terminator: str) -> str:
        if isinstance(line_terminator, str):
            line_terminator = cls._NAMES.get(line_terminator.lower(), line_terminator)
        if line_terminator not in cls.values():
            raise ConfigurationError(f"Invalid line terminator {line_terminator!r}. "
                                     f"Must be one of: {', '.join(cls._NAMES)}")
        return line_terminator


class ExportOptions(NamedTuple):
    """
    Options controlling a delimited export. Build with ExportOptions.create(),
    which fills unspecified options from settings['export'] and validates them.
    """
    delimiter: str = FieldDelimiter.COMMA
    line_terminator: str = LineBreak.CRLF
    encoding: str = FileEncoding.UTF8
    enable_bom: bool = False
    encoding_name: Optional[str] = None
    columns: Tuple[str, ...] = ()
    include_headers: bool = True
    sanitize_headers: bool = True
    date_format: str = '%Y-%m-%d'
    datetime_format: str = '%Y-%m-%d %H:%M:%S'
    quote_dates: bool = False

    @classmethod
    def create(cls, **kwargs) -> 'ExportOptions':
        """
        Build validated options.

        Raises:
            ConfigurationError: Unknown option, invalid delimiter, line terminator or encoding

        Example
        -------
        ::

            options = ExportOptions.create(delimiter='tab', line_terminator='lf',
                                           columns=['id', 'name'], quote_dates=True)
        """
        unknown = set(kwargs) - set(cls._fields)
        if unknown:
            raise ConfigurationError(f"Unknown export options: {', '.join(sorted(unknown))}")

        values = {field: settings['export'].get(field, default) for field, default in cls._field_defaults.items()}
        values.update({key: val for key, val in kwargs.items() if val is not None})

        values['delimiter'] = FieldDelimiter.resolve(values['delimiter'])
        values['line_terminator'] = LineBreak.resolve(values['line_terminator'])
        columns = values['columns'] or ()
        values['columns'] = (columns,) if isinstance(columns, str) else tuple(columns)
        values['encoding'] = (values['encoding'] or FileEncoding.UTF8).lower()
        # fail on a bad encoding here rather than after the file is created
        resolve_encoding(values['encoding'], values['enable_bom'], values['encoding_name'])
        return cls(**values)

    def resolve_encoding(self) -> Tuple[str, bool]:
        """(codec_name, write_bom) for these options."""
        return resolve_encoding(self.encoding, self.enable_bom, self.encoding_name)


class DelimitedWriter(BaseWriter):
    """
    Serializes the result set of an executed cursor as delimited text.

    Fields are formatted by :func:`~dbbridge.writers.formatting.format_value`, which
    already applies quoting, so data fields are joined with the delimiter as is.
    Header fields are quoted CSV-style only when they contain the delimiter, a
    quote or a line break.

    Parameters
    ----------
    cursor
        Cursor that has executed a query (dbbridge Cursor or raw DB-API cursor)
    file : str, Path or text file object, optional
        Output destination. None writes to stdout.
    options : ExportOptions, optional
        Formatting options, defaults to ExportOptions.create()
    cancel : threading.Event, optional
        Checked before every header field, every data field and every fetch

    Example
    -------
    ::

        cursor.execute("SELECT id, name FROM users")
        DelimitedWriter(cursor, 'users.csv', ExportOptions.create(delimiter=';')).write()
    """

    def __init__(self,
                 cursor,
                 file: Optional[Union[str, Path, TextIO]] = None,
                 options: Optional[ExportOptions] = None,
                 cancel=None):
        self.options = options or ExportOptions.create()
        encoding, write_bom = self.options.resolve_encoding()
        super().__init__(cursor, file, encoding=encoding, write_bom=write_bom)
        self.cancel = cancel
        self.included = []

    def _interface(self):
        connection = getattr(self.cursor, 'connection', None)
        return getattr(connection, 'interface', None)

    def _quote_header(self, header: str) -> str:
        if (self.options.delimiter in header or '"' in header
                or '\r' in header or '\n' in header):
            return '"' + header.replace('"', '""') + '"'
        return header

    def _fetch(self) -> Any:
        check_cancelled(self.cancel, self._row_num)
        try:
            return self.cursor.fetchone()
        except Exception as e:
            logger.error(f"Failed reading row {self._row_num + 1} from cursor: {e}")
            raise SourceReadError(f"Failed reading from cursor after {self._row_num} rows: {e}",
                                  rows_written=self._row_num) from e

    def _write_header(self, sink) -> None:
        options = self.options
        allow = set(options.columns)
        headers = []
        self.included = []
        for column in describe_columns(self.cursor.description, self._interface()):
            if allow and column.name not in allow:
                continue
            self.included.append(column)
            if options.include_headers:
                check_cancelled(self.cancel, 0)
                headers.append(self._quote_header(sanitize_header(column.name, options.sanitize_headers)))

        missing = allow - {column.name for column in self.included}
        if missing:
            logger.warning(f"Columns not in result set: {', '.join(sorted(missing))}")
        if options.include_headers:
            sink.write(options.delimiter.join(headers) + options.line_terminator)

    def serialize(self, sink) -> int:
        """
        Write header and data records to an open text sink.

        Returns:
            Number of data rows written (header excluded)

        Raises:
            OperationCancelled: cancel token was set. Records already written stay written.
            SourceReadError: the cursor failed while fetching
        """
        options = self.options
        self._row_num = 0
        self._write_header(sink)

        row = self._fetch()
        while row is not None:
            fields = []
            for column in self.included:
                check_cancelled(self.cancel, self._row_num)
                fields.append(format_value(row[column.ordinal], column.type_name, column.kind, options))
            sink.write(options.delimiter.join(fields) + options.line_terminator)
            self._row_num += 1
            row = self._fetch()
        return self._row_num

    def _write_data(self, file_obj) -> None:
        self.serialize(file_obj)


def to_delimited(cursor,
                 file: Optional[Union[str, Path, TextIO]] = None,
                 cancel=None,
                 **options) -> int:
    """
    Export an executed cursor to a delimited file.

    Args:
        cursor: Cursor that has executed a query
        file: Output filename or text file object. If None, writes to stdout
        cancel: Optional threading.Event used to cancel the export
        **options: ExportOptions fields (delimiter, line_terminator, encoding, ...)

    Returns:
        Number of data rows written

    Example:
        # Write to file
        to_delimited(cursor, 'users.csv')

        # Tab delimited, LF line endings, with BOM
        to_delimited(cursor, 'data.tsv', delimiter='tab', line_terminator='lf', enable_bom=True)
    """
    writer = DelimitedWriter(cursor, file, ExportOptions.create(**options), cancel=cancel)
    return writer.write()


__all__ = ['FieldDelimiter', 'LineBreak', 'ExportOptions', 'DelimitedWriter', 'to_delimited']
