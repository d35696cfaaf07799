import enum
import logging
import socket
import typing

from . import Parser, socks5
from .auth import Authenticator
from .config import Config
from .exceptions import ConnectionClosed, ProtocolError, RelayTerminated, SocksError
from .relay import Relay
from .resolver import Connector, check_command
from .socks5 import Addr, ClientRequest, Rep

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    greeting = "greeting"
    auth = "auth"
    request = "request"
    connecting = "connecting"
    relaying = "relaying"
    closed = "closed"


# a reply can only answer a request that has started
_REPLYABLE = {Stage.request, Stage.connecting}


class Session:
    """One client connection, from greeting to teardown.

    ``run`` passes through greeting, auth, request, connecting and relaying
    once. The first failure ends the session; if a request is being served
    and no reply went out yet, the client gets the matching reply code
    before both sockets are closed.
    """

    def __init__(
        self,
        client: socket.socket,
        config: Config,
        connector: typing.Optional[Connector] = None,
        authenticator: typing.Optional[Authenticator] = None,
    ):
        self.client = client
        self.config = config
        self.connector = connector or Connector.from_config(config)
        self.authenticator = authenticator or Authenticator.from_config(config)
        self.stage = Stage.greeting
        self.authenticated = False
        self.target: typing.Optional[Addr] = None
        self.target_sock: typing.Optional[socket.socket] = None
        self.replied = False
        try:
            self.peer = client.getpeername()
        except OSError:
            self.peer = None

    def __repr__(self):
        return f"<{self.__class__.__name__}({self.peer}, {self.stage.value})>"

    def run(self) -> None:
        try:
            self._serve()
        except RelayTerminated as e:
            logger.debug("%s relay ended: %s", self.peer, e.reason)
        except ConnectionClosed as e:
            logger.debug("%s went away during %s: %s", self.peer, self.stage.value, e)
        except SocksError as e:
            self._fail(e)
        except socket.timeout as e:
            self._fail(ProtocolError(f"client timed out: {e}"))
        except OSError as e:
            logger.debug("%s transport error during %s: %s", self.peer, self.stage.value, e)
        finally:
            self.close()

    def _serve(self) -> None:
        self.client.settimeout(self.config.handshake_timeout)
        parser = Parser(self._handshake())
        request = parser.run(self.client)
        check_command(request.cmd)
        self.stage = Stage.connecting
        logger.info("%s CONNECT %s:%d", self.peer, request.addr.host, request.addr.port)
        self.target_sock = self.connector.connect(request.addr)
        self._reply(Rep.succeeded)
        self.stage = Stage.relaying
        self.target_sock.settimeout(self.config.idle_timeout)
        early = parser.readall()
        if early:
            self.target_sock.sendall(early)
        Relay(
            self.client,
            self.target_sock,
            idle_timeout=self.config.idle_timeout,
            chunk_size=self.config.chunk_size,
        ).run()

    def _handshake(self) -> typing.Generator[tuple, typing.Any, ClientRequest]:
        greeting = yield from socks5.read_greeting()
        self.stage = Stage.auth
        yield from self.authenticator.negotiate(greeting.methods)
        self.authenticated = True
        self.stage = Stage.request
        request = yield from socks5.read_request()
        self.target = request.addr
        return request

    def _reply(self, rep: Rep) -> None:
        if self.replied:
            raise RuntimeError("request already answered")
        self.replied = True
        self.client.sendall(socks5.reply(rep))

    def _fail(self, exc: SocksError) -> None:
        if self.stage not in _REPLYABLE or self.replied:
            logger.info("%s refused during %s: %s", self.peer, self.stage.value, exc)
            return
        rep = socks5.reply_for(exc)
        logger.info("%s request failed (%s): %s", self.peer, rep.name, exc)
        try:
            self._reply(rep)
        except OSError as e:
            logger.debug("%s reply not delivered: %s", self.peer, e)

    def close(self) -> None:
        "shut down and close both sockets, safe to call more than once"
        if self.stage is Stage.closed:
            return
        self.stage = Stage.closed
        for sock in (self.client, self.target_sock):
            if sock is None:
                continue
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # not connected any more
                pass
            sock.close()
