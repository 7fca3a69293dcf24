# dbbridge/etl/isolation.py
"""
Portable transaction isolation levels and their native names per database type.
"""

from typing import Optional

from ..exceptions import ConfigurationError


class IsolationLevel:
    """
    Isolation levels accepted by bulk loads.

    - NONE: no transaction, every batch is committed on its own
    - DEFAULT: a transaction at the engine's default isolation level
    - READ_UNCOMMITTED .. SNAPSHOT: a transaction at that level

    Example
    -------
    ::
        >>> IsolationLevel.validate('read_committed')
        'READ_COMMITTED'
    """
    NONE = 'NONE'
    DEFAULT = 'DEFAULT'
    READ_UNCOMMITTED = 'READ_UNCOMMITTED'
    READ_COMMITTED = 'READ_COMMITTED'
    REPEATABLE_READ = 'REPEATABLE_READ'
    SERIALIZABLE = 'SERIALIZABLE'
    SNAPSHOT = 'SNAPSHOT'

    @classmethod
    def values(cls):
        return [cls.NONE, cls.DEFAULT, cls.READ_UNCOMMITTED, cls.READ_COMMITTED,
                cls.REPEATABLE_READ, cls.SERIALIZABLE, cls.SNAPSHOT]

    @classmethod
    def validate(cls, level: str) -> str:
        """Return the canonical name of level, or raise ConfigurationError."""
        name = level.upper() if isinstance(level, str) else level
        if name not in cls.values():
            raise ConfigurationError(f"Invalid isolation level '{level}'. Must be one of: {cls.values()}")
        return name


# Native level names by database type. A level missing from an engine's table
# has no equivalent there and is rejected rather than silently substituted.
NATIVE_ISOLATION_LEVELS = {
    'sqlserver': {
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'READ COMMITTED',
        IsolationLevel.REPEATABLE_READ: 'REPEATABLE READ',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
        IsolationLevel.SNAPSHOT: 'SNAPSHOT',
    },
    'postgres': {
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'READ COMMITTED',
        IsolationLevel.REPEATABLE_READ: 'REPEATABLE READ',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
        # postgres REPEATABLE READ is snapshot isolation
        IsolationLevel.SNAPSHOT: 'REPEATABLE READ',
    },
    'mysql': {
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'READ COMMITTED',
        IsolationLevel.REPEATABLE_READ: 'REPEATABLE READ',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
    },
    'oracle': {
        IsolationLevel.READ_COMMITTED: 'READ COMMITTED',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
    },
    'sqlite': {
        # sqlite transactions are serializable unless read_uncommitted is on
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'SERIALIZABLE',
        IsolationLevel.REPEATABLE_READ: 'SERIALIZABLE',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
    },
}


def resolve_isolation(level: str, database_type: str) -> Optional[str]:
    """
    Map a portable isolation level to the engine's native level name.

    Args:
        level: One of IsolationLevel.values() (case-insensitive)
        database_type: 'sqlserver', 'postgres', 'mysql', 'oracle' or 'sqlite'

    Returns:
        Native level name, or None for NONE and DEFAULT (no explicit level)

    Raises:
        ConfigurationError: unknown level, unknown database type, or a level the engine does not support

    Example
    -------
    ::
        >>> resolve_isolation('SNAPSHOT', 'sqlserver')
        'SNAPSHOT'
        >>> resolve_isolation('DEFAULT', 'oracle') is None
        True
    """
    level = IsolationLevel.validate(level)
    if database_type not in NATIVE_ISOLATION_LEVELS:
        raise ConfigurationError(f"No isolation level mapping for database type '{database_type}'")
    if level in (IsolationLevel.NONE, IsolationLevel.DEFAULT):
        return None
    native = NATIVE_ISOLATION_LEVELS[database_type].get(level)
    if native is None:
        raise ConfigurationError(f"Isolation level {level} is not supported by {database_type}")
    return native
