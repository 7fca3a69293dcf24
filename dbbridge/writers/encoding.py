# dbbridge/writers/encoding.py
"""
Text encodings for exported files.
"""

import codecs
import locale
import logging
from typing import Optional, Tuple

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BOM = '\ufeff'

# codecs that write their own BOM, mapped to the plain codec
_BOM_CODECS = {
    'utf-8-sig': 'utf-8',
    'utf-16': 'utf-16-le',
    'utf-32': 'utf-32-le',
}
_UNICODE_CODECS = ('utf-8', 'utf-16-le', 'utf-16-be', 'utf-32-le', 'utf-32-be', 'utf-7')


class FileEncoding:
    """
    Encoding presets for delimited exports.

    - UTF8: UTF-8, BOM only when requested
    - ASCII: 7-bit ASCII, unencodable characters raise
    - ANSI: the platform's preferred encoding (cp1252 on most Windows hosts)
    - UNICODE: UTF-16 little endian, always with a BOM
    - OTHER: any codec name Python knows, given separately
    """
    UTF8 = 'utf8'
    ASCII = 'ascii'
    ANSI = 'ansi'
    UNICODE = 'unicode'
    OTHER = 'other'

    @classmethod
    def values(cls):
        return [cls.UTF8, cls.ASCII, cls.ANSI, cls.UNICODE, cls.OTHER]


def resolve_encoding(encoding: str = FileEncoding.UTF8, enable_bom: bool = False,
                     encoding_name: Optional[str] = None) -> Tuple[str, bool]:
    """
    Resolve an encoding preset to a Python codec name and whether a BOM is written.

    Args:
        encoding: One of FileEncoding.values()
        enable_bom: Write a byte order mark. Only meaningful for Unicode codecs.
        encoding_name: Codec name, required when encoding is FileEncoding.OTHER

    Returns:
        (codec_name, write_bom)

    Raises:
        ConfigurationError: Unknown preset or codec name

    Example:
        >>> resolve_encoding(FileEncoding.UNICODE)
        ('utf-16-le', True)
        >>> resolve_encoding(FileEncoding.OTHER, encoding_name='latin-1')
        ('iso8859-1', False)
    """
    preset = (encoding or FileEncoding.UTF8).lower()
    if preset == FileEncoding.UTF8:
        return 'utf-8', bool(enable_bom)
    elif preset == FileEncoding.ASCII:
        return 'ascii', False
    elif preset == FileEncoding.ANSI:
        return locale.getpreferredencoding(False), False
    elif preset == FileEncoding.UNICODE:
        return 'utf-16-le', True
    elif preset != FileEncoding.OTHER:
        raise ConfigurationError(f"Invalid encoding '{encoding}'. Must be one of: {FileEncoding.values()}")

    if not encoding_name:
        raise ConfigurationError("An encoding name is required when encoding is 'other'")
    try:
        codec = codecs.lookup(encoding_name).name
    except LookupError as e:
        raise ConfigurationError(f"Unknown encoding name: {encoding_name}") from e

    codec = _BOM_CODECS.get(codec, codec)
    if codec in _UNICODE_CODECS:
        return codec, bool(enable_bom)
    if enable_bom:
        logger.debug(f"Ignoring BOM request for non-Unicode encoding {codec}")
    return codec, False
