import argparse
import logging
import sys

from . import __version__
from .config import Config, ConfigError
from .server import make_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="socksfree", description="SOCKS5 CONNECT proxy server"
    )
    parser.add_argument("host", nargs="?", help="listen address (default 0.0.0.0)")
    parser.add_argument("port", nargs="?", type=int, help="listen port (default 61080)")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("--username", help="require this username")
    parser.add_argument("--password", help="require this password")
    parser.add_argument("--connect-timeout", type=float)
    parser.add_argument("--idle-timeout", type=float)
    parser.add_argument("--handshake-timeout", type=float)
    parser.add_argument("--chunk-size", type=int)
    parser.add_argument(
        "--sequential",
        action="store_true",
        default=None,
        help="serve one connection at a time",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=__version__)
    return parser


def load_config(args: argparse.Namespace) -> Config:
    overrides = {
        "host": args.host,
        "port": args.port,
        "username": args.username,
        "password": args.password,
        "connect_timeout": args.connect_timeout,
        "idle_timeout": args.idle_timeout,
        "handshake_timeout": args.handshake_timeout,
        "chunk_size": args.chunk_size,
        "sequential": args.sequential,
    }
    if args.config:
        return Config.from_file(args.config, **overrides)
    return Config(**{k: v for k, v in overrides.items() if v is not None})


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT
    )
    try:
        config = load_config(args)
    except (ConfigError, OSError) as e:
        logger.error("bad configuration: %s", e)
        return 2
    try:
        server = make_server(config)
    except OSError as e:
        logger.error("failed to listen on %s:%d: %s", config.host, config.port, e)
        return 1
    with server:
        host, port = server.server_address[:2]
        logger.info(
            "SOCKS5 proxy listening on %s:%d (%s)",
            host,
            port,
            "username/password" if config.auth_required else "no auth",
        )
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
