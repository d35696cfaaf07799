import logging
import socket
import socketserver
import typing

from .config import Config
from .resolver import Connector
from .session import Session

logger = logging.getLogger(__name__)


class SessionHandler(socketserver.BaseRequestHandler):
    def handle(self):
        Session(self.request, self.server.config, self.server.connector).run()


class SocksServer(socketserver.TCPServer):
    "accepts and serves one connection at a time"

    allow_reuse_address = True

    def __init__(
        self,
        config: Config,
        connector: typing.Optional[Connector] = None,
        bind_and_activate: bool = True,
    ):
        self.config = config
        self.connector = connector or Connector.from_config(config)
        if ":" in config.host:
            self.address_family = socket.AF_INET6
        super().__init__((config.host, config.port), SessionHandler, bind_and_activate)

    def handle_error(self, request, client_address):
        logger.exception("unexpected error serving %s", client_address)


class ThreadingSocksServer(socketserver.ThreadingMixIn, SocksServer):
    "one thread per connection"

    daemon_threads = True


def make_server(
    config: Config, connector: typing.Optional[Connector] = None
) -> SocksServer:
    cls = SocksServer if config.sequential else ThreadingSocksServer
    return cls(config, connector)
