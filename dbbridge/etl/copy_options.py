# dbbridge/etl/copy_options.py
"""
Bulk copy option flags.
"""

from functools import reduce
from typing import Tuple


class CopyOptions:
    """
    Bit flags controlling a bulk copy.

    - KEEP_IDENTITY: insert the dataset's values into identity columns
    - FIRE_TRIGGERS: run insert triggers on the destination table

    Example
    -------
    ::
        >>> resolve_copy_options(keep_identity=True, fire_triggers=True)
        3
    """
    DEFAULT = 0
    KEEP_IDENTITY = 1
    FIRE_TRIGGERS = 2

    @classmethod
    def values(cls):
        return [cls.DEFAULT, cls.KEEP_IDENTITY, cls.FIRE_TRIGGERS]

    @classmethod
    def names(cls, flags: int) -> list:
        """Names of the flags set in flags, for logging."""
        return [name for name in ('KEEP_IDENTITY', 'FIRE_TRIGGERS') if flags & getattr(cls, name)]


def combine_flags(*pairs: Tuple[int, bool]) -> int:
    """
    OR together every flag whose toggle is true.

    Example:
        >>> combine_flags((CopyOptions.KEEP_IDENTITY, False), (CopyOptions.FIRE_TRIGGERS, True))
        2
    """
    return reduce(lambda flags, pair: flags | (pair[0] if pair[1] else 0), pairs, CopyOptions.DEFAULT)


def resolve_copy_options(keep_identity: bool = False, fire_triggers: bool = False) -> int:
    """Flags for a BulkLoadRequest's keep_identity / fire_triggers toggles."""
    return combine_flags((CopyOptions.KEEP_IDENTITY, keep_identity),
                         (CopyOptions.FIRE_TRIGGERS, fire_triggers))
