# dbbridge/etl/dataset.py
"""
Normalize in-memory datasets into column names and row tuples for bulk loading.
"""

import itertools
import logging
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


def _is_dataframe(data) -> bool:
    module = type(data).__module__
    return module.startswith('pandas') or module.startswith('polars')


def _dataframe_rows(df, columns: Optional[Sequence[str]]) -> Tuple[List[str], Iterator[tuple]]:
    """
    Rows of a pandas or polars DataFrame. Neither library is imported here,
    the caller has already imported one and passed a DataFrame.
    """
    logger.debug(f"Reading rows from {type(df).__module__} DataFrame")
    if columns:
        missing = [col for col in columns if col not in list(df.columns)]
        if missing:
            raise ValueError(f"Columns not in DataFrame: {missing}")
    if type(df).__module__.startswith('pandas'):
        if columns:
            df = df[list(columns)]
        return list(df.columns), df.itertuples(index=False, name=None)
    if columns:
        df = df.select(list(columns))
    return list(df.columns), df.iter_rows()


def _checked_width(rows: Iterable[Sequence[Any]], width: int) -> Iterator[tuple]:
    for row_num, row in enumerate(rows, 1):
        if len(row) != width:
            raise ValueError(f"Row {row_num} has {len(row)} values, expected {width}")
        yield tuple(row)


def _mapping_rows(rows: Iterable[Any], columns: List[str]) -> Iterator[tuple]:
    for row_num, row in enumerate(rows, 1):
        try:
            yield tuple(row[col] for col in columns)
        except (KeyError, IndexError) as e:
            raise ValueError(f"Row {row_num} is missing column {e}") from e


def dataset_rows(data, columns: Optional[Sequence[str]] = None) -> Tuple[List[str], Iterator[tuple]]:
    """
    Resolve the columns of a dataset and an iterator over its rows as tuples.

    Accepted datasets:

    * pandas or polars DataFrame
    * iterable of dicts or dict-like records (anything with ``keys()``)
    * iterable of namedtuples
    * iterable of lists/tuples, with ``columns`` given

    Args:
        data: The dataset
        columns: Column names to load. Required for plain lists/tuples; for other
            datasets it selects (and orders) a subset of their columns.

    Returns:
        (columns, rows)

    Raises:
        ValueError: columns cannot be determined, or a row does not match them

    Example
    -------
    ::

        columns, rows = dataset_rows([{'id': 1, 'name': 'a'}, {'id': 2, 'name': 'b'}])
        # ['id', 'name'], iter([(1, 'a'), (2, 'b')])
    """
    if _is_dataframe(data):
        return _dataframe_rows(data, columns)

    iterator = iter(data)
    try:
        first = next(iterator)
    except StopIteration:
        return list(columns or []), iter(())
    rows = itertools.chain([first], iterator)

    if hasattr(first, 'keys'):
        data_columns = list(columns) if columns else list(first.keys())
        return data_columns, _mapping_rows(rows, data_columns)
    if hasattr(first, '_fields'):
        if columns:
            data_columns = list(columns)
            rows = (row._asdict() for row in rows)
            return data_columns, _mapping_rows(rows, data_columns)
        data_columns = list(first._fields)
        return data_columns, _checked_width(rows, len(data_columns))
    if isinstance(first, (list, tuple)):
        if not columns:
            raise ValueError("columns are required when rows are plain lists or tuples")
        data_columns = list(columns)
        return data_columns, _checked_width(rows, len(data_columns))
    raise ValueError(f"Unsupported row type: {type(first).__name__}")
