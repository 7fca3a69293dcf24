# dbbridge/cli.py

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from . import config
from .exceptions import ConfigurationError, DbBridgeError, OperationCancelled
from .export import QuerySpec, export_query
from .writers.delimited import ExportOptions

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def _parse_params(pairs):
    """NAME=VALUE pairs from --param, values stay strings."""
    params = {}
    for pair in pairs or []:
        name, sep, value = pair.partition('=')
        if not sep or not name:
            raise ConfigurationError(f"Parameters must be NAME=VALUE, got: {pair}")
        params[name] = value
    return params


def run_export(args, cancel: threading.Event) -> int:
    """Run the export command. Returns the process exit code."""
    if args.config:
        config.set_config_file(args.config)

    query_text = Path(args.query_file).read_text() if args.query_file else args.query
    query = QuerySpec.create(query_text, _parse_params(args.param), timeout=args.timeout)
    options = ExportOptions.create(
        delimiter=args.delimiter,
        line_terminator=args.line_terminator,
        encoding=args.encoding,
        encoding_name=args.encoding_name,
        enable_bom=args.bom or None,
        columns=args.columns.split(',') if args.columns else None,
        include_headers=False if args.no_headers else None,
        sanitize_headers=False if args.raw_headers else None,
        date_format=args.date_format,
        datetime_format=args.datetime_format,
        quote_dates=args.quote_dates or None,
    )

    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        rows = export_query(query, args.output, args.connection, options, cancel=cancel)
    except OperationCancelled as e:
        print(f"Export cancelled after {e.rows} rows", file=sys.stderr)
        return EXIT_CANCELLED
    except DbBridgeError as e:
        logger.error(f"Export failed: {e}")
        print(f"Export failed: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.output:
        print(f"Exported {rows} rows to {args.output}", file=sys.stderr)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='dbbridge', description='dbbridge command-line utilities')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # export
    export_parser = subparsers.add_parser('export', help='Export query results to a delimited file')
    source = export_parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--query', '-q', help='SQL query, parameters as :name')
    source.add_argument('--query-file', '-f', help='File containing the SQL query')
    export_parser.add_argument('--connection', '-c', required=True, help='Connection name from config file')
    export_parser.add_argument('--output', '-o', help='Output file (stdout if omitted)')
    export_parser.add_argument('--config', help='Config file path')
    export_parser.add_argument('--param', '-p', action='append', metavar='NAME=VALUE',
                               help='Query parameter, may be repeated')
    export_parser.add_argument('--timeout', type=int, help='Command timeout in seconds, 0 for none')
    export_parser.add_argument('--delimiter', '-d', help="Field delimiter or comma/semicolon/pipe/tab")
    export_parser.add_argument('--line-terminator', choices=['crlf', 'lf', 'cr'], help='Record terminator')
    export_parser.add_argument('--encoding', choices=['utf8', 'ascii', 'ansi', 'unicode', 'other'])
    export_parser.add_argument('--encoding-name', help="Codec name when --encoding is 'other'")
    export_parser.add_argument('--bom', action='store_true', help='Write a byte order mark')
    export_parser.add_argument('--columns', help='Comma separated columns to include')
    export_parser.add_argument('--no-headers', action='store_true', help='Omit the header row')
    export_parser.add_argument('--raw-headers', action='store_true', help='Do not sanitize header names')
    export_parser.add_argument('--date-format', help='strftime pattern for date columns')
    export_parser.add_argument('--datetime-format', help='strftime pattern for date-time columns')
    export_parser.add_argument('--quote-dates', action='store_true', help='Quote date and date-time values')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt (prompted if omitted)')
    pwd_parser.add_argument('--key', help='Encryption key, defaults to DBBRIDGE_ENCRYPTION_KEY or keyring')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.command == 'export':
            return run_export(args, threading.Event())
        elif args.command == 'generate-key':
            print(config.generate_encryption_key())
            print("Store in system keyring with `dbbridge store-key [your key]` "
                  f"or in the {config.ENCRYPTION_KEY_VAR} environment variable", file=sys.stderr)
        elif args.command == 'store-key':
            stored = config.store_key(args.key, force=args.force)
            print("Stored encryption key in system keyring" if stored else
                  "Encryption key already stored in system keyring. Use --force to overwrite.")
        elif args.command == 'encrypt-password':
            password = args.password
            if password is None:
                import getpass
                password = getpass.getpass("Enter password to encrypt: ")
            print(config.encrypt_password(password, args.key))
    except (DbBridgeError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
