# dbbridge/writers/formatting.py
"""
Type-aware formatting of query results into delimited text fields.

Every cell leaving this module is a ``str``. How a value is rendered depends on
its resolved kind (see :class:`ValueKind`), not on the driver's storage type:

* text is always double-quoted, with embedded quotes escaped as ``\\"`` and
  line breaks collapsed to a space
* dates and date-times use the configured strftime patterns and are quoted
  only when ``quote_dates`` is set
* floats and decimals get at most 11 fractional digits with trailing zeros trimmed
* everything else is ``str(value)``
"""

import datetime as dt
import decimal
import re
from decimal import Decimal
from typing import Any, List, NamedTuple, Optional, Tuple

MAX_FRACTION_DIGITS = 11
_QUANTUM = Decimal(1).scaleb(-MAX_FRACTION_DIGITS)

_HEADER_ILLEGAL = re.compile(r'[^a-zA-Z0-9_-]')
_HEADER_LEADING = re.compile(r'^[0-9_]+')
_LINE_BREAKS = re.compile(r'\r\n|\r|\n')

# strftime directives whose output depends on LC_TIME
_DAY_NAMES = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
_MONTH_NAMES = ('January', 'February', 'March', 'April', 'May', 'June', 'July',
                'August', 'September', 'October', 'November', 'December')
_LOCALE_DIRECTIVES = re.compile(r'%([%aAbBhpcxX])')


class ValueKind:
    """
    Semantic category of a column's values, used to pick a formatting rule.

    Example:
        >>> ValueKind.of(Decimal('1.5'))
        'decimal'
    """
    NULL = 'null'
    TEXT = 'text'
    DATETIME = 'datetime'
    FLOAT64 = 'float64'
    FLOAT32 = 'float32'
    DECIMAL = 'decimal'
    OTHER = 'other'

    @classmethod
    def values(cls):
        return [cls.NULL, cls.TEXT, cls.DATETIME, cls.FLOAT64, cls.FLOAT32, cls.DECIMAL, cls.OTHER]

    @classmethod
    def numeric(cls):
        return (cls.FLOAT64, cls.FLOAT32, cls.DECIMAL)

    @classmethod
    def of(cls, value: Any) -> str:
        """Resolve the kind of a single Python value."""
        if value is None:
            return cls.NULL
        elif isinstance(value, str):
            return cls.TEXT
        elif isinstance(value, (dt.datetime, dt.date)):
            return cls.DATETIME
        elif isinstance(value, float):
            return cls.FLOAT64
        elif isinstance(value, Decimal):
            return cls.DECIMAL
        return cls.OTHER

    @classmethod
    def from_python_type(cls, py_type: type) -> str:
        """Resolve the kind of a column whose driver reports a Python type (pyodbc, pymssql)."""
        if issubclass(py_type, str):
            return cls.TEXT
        elif issubclass(py_type, (dt.datetime, dt.date)):
            return cls.DATETIME
        elif issubclass(py_type, float):
            return cls.FLOAT64
        elif issubclass(py_type, Decimal):
            return cls.DECIMAL
        return cls.OTHER


# PostgreSQL type OIDs reported by psycopg in cursor.description
PG_TYPES = {
    16: ('bool', ValueKind.OTHER),
    20: ('int8', ValueKind.OTHER),
    21: ('int2', ValueKind.OTHER),
    23: ('int4', ValueKind.OTHER),
    25: ('text', ValueKind.TEXT),
    700: ('float4', ValueKind.FLOAT32),
    701: ('float8', ValueKind.FLOAT64),
    1042: ('bpchar', ValueKind.TEXT),
    1043: ('varchar', ValueKind.TEXT),
    1082: ('date', ValueKind.DATETIME),
    1083: ('time', ValueKind.OTHER),
    1114: ('timestamp', ValueKind.DATETIME),
    1184: ('timestamptz', ValueKind.DATETIME),
    1700: ('numeric', ValueKind.DECIMAL),
    2950: ('uuid', ValueKind.OTHER),
}


class ColumnDescriptor(NamedTuple):
    """One result column. ``type_name``/``kind`` are None when the driver gives no usable type."""
    ordinal: int
    name: str
    type_name: Optional[str]
    kind: Optional[str]


def _resolve_type(type_code: Any, interface=None) -> Tuple[Optional[str], Optional[str]]:
    if type_code is None:
        return None, None
    if isinstance(type_code, type):
        if issubclass(type_code, dt.datetime):
            return 'datetime', ValueKind.DATETIME
        if issubclass(type_code, dt.date):
            return 'date', ValueKind.DATETIME
        return type_code.__name__, ValueKind.from_python_type(type_code)
    if interface is not None and interface.__name__.startswith('psycopg') and isinstance(type_code, int):
        if type_code in PG_TYPES:
            return PG_TYPES[type_code]
        return None, None
    if interface is not None:
        # DB-API type objects compare equal to every type code in their group
        for attr, kind in (('STRING', ValueKind.TEXT), ('DATETIME', ValueKind.DATETIME)):
            type_object = getattr(interface, attr, None)
            if type_object is not None and type_code == type_object:
                return getattr(type_code, 'name', None), kind
    return None, None


def describe_columns(description, interface=None) -> List[ColumnDescriptor]:
    """
    Build column descriptors from a DB-API ``cursor.description``.

    Args:
        description: Sequence of 7-item column descriptions from the cursor
        interface: The driver module, used to interpret driver-specific type codes

    Returns:
        List of ColumnDescriptor in result order
    """
    descriptors = []
    for ordinal, col in enumerate(description or ()):
        type_name, kind = _resolve_type(col[1] if len(col) > 1 else None, interface)
        descriptors.append(ColumnDescriptor(ordinal, col[0], type_name, kind))
    return descriptors


def sanitize_header(name: str, enabled: bool = True) -> str:
    """
    Reduce a column name to a safe, lower-case header.

    Removes every character outside ``[A-Za-z0-9_-]``, then any leading digits or
    underscores, then lower-cases. May return an empty string.

    Example:
        >>> sanitize_header('2nd Order #')
        'ndorder'
    """
    if not enabled:
        return name
    name = _HEADER_ILLEGAL.sub('', name)
    name = _HEADER_LEADING.sub('', name)
    return name.lower()


def _clock(value) -> str:
    hour, minute, second = (getattr(value, name, 0) for name in ('hour', 'minute', 'second'))
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def _invariant_strftime(value, fmt: str) -> str:
    """
    strftime with English day/month names and AM/PM whatever the process locale.

    %c, %x and %X are expanded to their C-locale patterns.
    """
    def replace(match):
        directive = match.group(1)
        if directive == '%':
            return '%%'
        elif directive == 'a':
            return _DAY_NAMES[value.weekday()][:3]
        elif directive == 'A':
            return _DAY_NAMES[value.weekday()]
        elif directive in 'bh':
            return _MONTH_NAMES[value.month - 1][:3]
        elif directive == 'B':
            return _MONTH_NAMES[value.month - 1]
        elif directive == 'c':
            return (f"{_DAY_NAMES[value.weekday()][:3]} {_MONTH_NAMES[value.month - 1][:3]} "
                    f"{value.day:2d} {_clock(value)} {value.year}")
        elif directive == 'x':
            return f"{value.month:02d}/{value.day:02d}/{value.year % 100:02d}"
        elif directive == 'X':
            return _clock(value)
        hour = getattr(value, 'hour', 0)
        return 'AM' if hour < 12 else 'PM'

    return value.strftime(_LOCALE_DIRECTIVES.sub(replace, fmt))


def format_number(value: Any) -> str:
    """
    Render a float or decimal with up to 11 fractional digits, trimming trailing zeros.

    Example:
        >>> format_number(2.50)
        '2.5'
        >>> format_number(Decimal('3.000'))
        '3'
    """
    if isinstance(value, float):
        number = Decimal(repr(value))
    elif isinstance(value, Decimal):
        number = value
    else:
        number = Decimal(str(value))

    if number.is_nan():
        return 'NaN'
    if number.is_infinite():
        return '-Infinity' if number < 0 else 'Infinity'

    context = decimal.Context(prec=max(28, number.adjusted() + MAX_FRACTION_DIGITS + 2),
                              rounding=decimal.ROUND_HALF_UP)
    number = number.quantize(_QUANTUM, context=context)
    text = format(number, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    if text in ('-0', ''):
        text = '0'
    return text


def format_value(value: Any, type_name: Optional[str], kind: Optional[str], options) -> str:
    """
    Format one cell for delimited output.

    Args:
        value: Raw value from the cursor
        type_name: Source type name ('date' selects options.date_format)
        kind: ValueKind of the column, or None to resolve it from the value
        options: ExportOptions (date_format, datetime_format, quote_dates)

    Returns:
        The field text, already quoted where required

    Note:
        A NULL is written as ``""`` only when the column is known to be text.
        sqlite3 reports no column types, so every NULL it returns is written
        as an empty, unquoted field.
    """
    if kind is None:
        kind = ValueKind.of(value)
    if type_name is None and isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        type_name = 'date'

    if value is None:
        if kind == ValueKind.TEXT:
            return '""'
        if kind == ValueKind.DATETIME and options.quote_dates:
            return '""'
        return ''

    if kind == ValueKind.TEXT:
        text = str(value).replace('"', '\\"')
        text = _LINE_BREAKS.sub(' ', text)
        return f'"{text}"'

    if kind == ValueKind.DATETIME:
        if not hasattr(value, 'strftime'):
            text = str(value)
        elif type_name is not None and type_name.lower() == 'date':
            text = _invariant_strftime(value, options.date_format)
        else:
            text = _invariant_strftime(value, options.datetime_format)
        return f'"{text}"' if options.quote_dates else text

    if kind in ValueKind.numeric() and not isinstance(value, bool):
        return format_number(value)

    return str(value)
