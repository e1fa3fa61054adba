import argparse
import logging
import os
from urllib.parse import urlparse

DEFAULT_ENDPOINT = "ws://127.0.0.1:1234/connect"
DEFAULT_LOG_FILE = "load_generator.log"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

MODES = ("burst", "connections")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class LoadConfig:
    """Settings for one load generator run.

    Only ``endpoint`` and ``count`` matter to the two operations; the rest
    tunes the transport, the pool hold time and logging.
    """

    def __init__(self, mode="burst", endpoint=DEFAULT_ENDPOINT, count=10,
                 open_timeout=10.0, close_timeout=10.0, write_limit=65536,
                 hold=0.0, log_level="INFO", log_file=DEFAULT_LOG_FILE):
        self.mode = mode
        self.endpoint = endpoint
        self.count = count
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.write_limit = write_limit
        self.hold = hold
        self.log_level = log_level
        self.log_file = log_file

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        return cls(
            endpoint=environ.get("WS_LOAD_ENDPOINT", DEFAULT_ENDPOINT),
            count=int(environ.get("WS_LOAD_COUNT", "10")),
            open_timeout=float(environ.get("WS_LOAD_OPEN_TIMEOUT", "10")),
            close_timeout=float(environ.get("WS_LOAD_CLOSE_TIMEOUT", "10")),
            hold=float(environ.get("WS_LOAD_HOLD", "0")),
            log_level=environ.get("WS_LOAD_LOG_LEVEL", "INFO").upper(),
            log_file=environ.get("WS_LOAD_LOG_FILE", DEFAULT_LOG_FILE),
        )

    def validate(self):
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode: {self.mode}")
        url = urlparse(self.endpoint)
        if url.scheme not in ("ws", "wss") or not url.hostname:
            raise ValueError(f"Endpoint must be a ws:// or wss:// URL, got {self.endpoint!r}")
        if self.count < 0:
            raise ValueError(f"Count must be >= 0, got {self.count}")
        if self.open_timeout <= 0 or self.close_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.write_limit <= 0:
            raise ValueError("Write limit must be positive")
        if self.hold < 0:
            raise ValueError(f"Hold time must be >= 0, got {self.hold}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        return self

    def connection_options(self):
        return {
            "open_timeout": self.open_timeout,
            "close_timeout": self.close_timeout,
            "write_limit": self.write_limit,
        }


def build_parser(defaults):
    parser = argparse.ArgumentParser(
        prog="ws-load",
        description="Generate WebSocket load: a numbered message burst or a pool of open connections",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--endpoint', default=defaults.endpoint, help=f"WebSocket URL (default: {defaults.endpoint})")
    common.add_argument('--count', type=int, default=defaults.count, help="Number of messages or connections")
    common.add_argument('--open-timeout', type=float, default=defaults.open_timeout, help="Seconds to wait for the handshake")
    common.add_argument('--close-timeout', type=float, default=defaults.close_timeout, help="Seconds to wait for the closing handshake")
    common.add_argument('--write-limit', type=int, default=defaults.write_limit, help="Bytes buffered before a send waits")
    common.add_argument('--log-level', default=defaults.log_level, choices=LOG_LEVELS)
    common.add_argument('--log-file', default=defaults.log_file, help="Debug log file, empty to disable")

    subparsers = parser.add_subparsers(dest='mode', required=True)
    subparsers.add_parser('burst', parents=[common], help="Send a marker and COUNT numbered messages on one connection")
    connections = subparsers.add_parser('connections', parents=[common], help="Open COUNT concurrent connections")
    connections.add_argument('--hold', type=float, default=defaults.hold, help="Seconds to keep the connections open")
    return parser


def parse_args(argv=None, environ=None):
    try:
        defaults = LoadConfig.from_env(environ)
    except ValueError as e:
        build_parser(LoadConfig()).error(f"Invalid WS_LOAD_* environment setting: {e}")
    parser = build_parser(defaults)
    args = parser.parse_args(argv)

    config = LoadConfig(
        mode=args.mode,
        endpoint=args.endpoint,
        count=args.count,
        open_timeout=args.open_timeout,
        close_timeout=args.close_timeout,
        write_limit=args.write_limit,
        hold=getattr(args, 'hold', defaults.hold),
        log_level=args.log_level,
        log_file=args.log_file,
    )
    try:
        return config.validate()
    except ValueError as e:
        parser.error(str(e))


def configure_logging(level="INFO", log_file=DEFAULT_LOG_FILE):
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Add console logging
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level))
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)
