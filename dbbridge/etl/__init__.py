# dbbridge/etl/__init__.py
"""
Loading in-memory datasets into database tables.

- BulkLoader / bulk_load: batched INSERT copy under an isolation policy
- IsolationLevel / resolve_isolation: portable isolation levels and native names
- CopyOptions / resolve_copy_options: KEEP_IDENTITY and FIRE_TRIGGERS flags
- dataset_rows: columns and rows from DataFrames, dicts, records and lists

Example
-------
::

    from dbbridge.etl import BulkLoader, BulkLoadRequest, IsolationLevel

    request = BulkLoadRequest('staging.orders', df, isolation_level=IsolationLevel.SERIALIZABLE)
    outcome = BulkLoader('warehouse').load(request)
"""

from .bulk import BulkLoader, BulkLoadRequest, CopyOutcome, InsertTransport, bulk_load
from .copy_options import CopyOptions, combine_flags, resolve_copy_options
from .dataset import dataset_rows
from .isolation import IsolationLevel, resolve_isolation

__all__ = ['BulkLoader', 'BulkLoadRequest', 'CopyOutcome', 'InsertTransport', 'bulk_load',
           'CopyOptions', 'combine_flags', 'resolve_copy_options', 'dataset_rows',
           'IsolationLevel', 'resolve_isolation']
