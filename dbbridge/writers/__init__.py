# dbbridge/writers/__init__.py
"""
Delimited text export of query results.

- formatting: type-aware value formatting and header sanitizing
- encoding: file encoding presets and byte order marks
- delimited: DelimitedWriter and the ExportOptions that drive it

Example
-------
::
    import dbbridge.writers as writers

    cursor.execute("SELECT * FROM users")
    writers.to_delimited(cursor, 'users.csv', delimiter='semicolon', quote_dates=True)
"""

from .base import BaseWriter, open_sink
from .delimited import DelimitedWriter, ExportOptions, FieldDelimiter, LineBreak, to_delimited
from .encoding import FileEncoding, resolve_encoding
from .formatting import ColumnDescriptor, ValueKind, describe_columns, format_value, sanitize_header

__all__ = ['BaseWriter', 'open_sink', 'DelimitedWriter', 'ExportOptions', 'FieldDelimiter', 'LineBreak',
           'to_delimited', 'FileEncoding', 'resolve_encoding', 'ColumnDescriptor', 'ValueKind',
           'describe_columns', 'format_value', 'sanitize_header']
