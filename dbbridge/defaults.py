# dbbridge/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'command_timeout': 30,  # seconds, 0 = no limit
    'export': {
        'delimiter': ',',
        'line_terminator': '\r\n',
        'encoding': 'utf8',      # utf8, ascii, ansi, unicode, other
        'encoding_name': None,   # codec name used when encoding is 'other'
        'enable_bom': False,
        'include_headers': True,
        'sanitize_headers': True,
        'date_format': '%Y-%m-%d',
        'datetime_format': '%Y-%m-%d %H:%M:%S',
        'quote_dates': False,
    },
    'bulk_load': {
        'batch_size': 1000,
        'timeout': 30,
        'isolation_level': 'READ_COMMITTED',
    },
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
    }
}
