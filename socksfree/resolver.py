import errno
import logging
import socket
import threading
import typing

from .exceptions import ConnectFailed, ResolutionFailed, UnsupportedCommand
from .socks5 import Addr, AddrType, Cmd

logger = logging.getLogger(__name__)

SockAddr = typing.Tuple[int, tuple]

_REFUSED = {errno.ECONNREFUSED}
_NETWORK_UNREACHABLE = {errno.ENETUNREACH, errno.ENETDOWN}
_HOST_UNREACHABLE = {errno.EHOSTUNREACH, errno.EHOSTDOWN}


def check_command(cmd: int) -> None:
    if cmd != Cmd.connect:
        raise UnsupportedCommand(f"command {cmd:#04x} is not supported")


def resolve_host(host: str, port: int) -> typing.List[SockAddr]:
    "default resolver, any TCP address of ``host``"
    infos = socket.getaddrinfo(host, port, 0, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    return [(family, sockaddr) for family, _, _, _, sockaddr in infos]


def classify(exc: OSError) -> ConnectFailed:
    "turn a failed connect into a `ConnectFailed` carrying its reason"
    if isinstance(exc, socket.timeout) or exc.errno == errno.ETIMEDOUT:
        reason = ConnectFailed.TIMEOUT
    elif exc.errno in _REFUSED:
        reason = ConnectFailed.REFUSED
    elif exc.errno in _NETWORK_UNREACHABLE:
        reason = ConnectFailed.NETWORK_UNREACHABLE
    elif exc.errno in _HOST_UNREACHABLE:
        reason = ConnectFailed.HOST_UNREACHABLE
    else:
        reason = ConnectFailed.OTHER
    return ConnectFailed(reason, str(exc))


class Connector:
    """Opens the outbound connection for a request.

    ``resolve(host, port)`` returns ``[(family, sockaddr), ...]`` for a
    domain name and raises ``OSError`` when it cannot. It runs in a worker
    thread; a lookup still pending after ``resolve_timeout`` seconds (by
    default ``connect_timeout``) fails with ``ResolutionFailed`` and the
    worker is left to finish on its own.
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        resolve: typing.Optional[typing.Callable[[str, int], typing.List[SockAddr]]] = None,
        resolve_timeout: typing.Optional[float] = None,
    ):
        self.connect_timeout = connect_timeout
        self.resolve = resolve or resolve_host
        self.resolve_timeout = (
            connect_timeout if resolve_timeout is None else resolve_timeout
        )

    @classmethod
    def from_config(cls, config) -> "Connector":
        return cls(connect_timeout=config.connect_timeout)

    def addresses(self, addr: Addr) -> typing.List[SockAddr]:
        if addr.atyp == AddrType.ipv4:
            return [(socket.AF_INET, (addr.host, addr.port))]
        if addr.atyp == AddrType.ipv6:
            return [(socket.AF_INET6, (addr.host, addr.port, 0, 0))]
        try:
            addr.host.encode("utf-8")
        except UnicodeError as e:
            raise ResolutionFailed(f"{addr.host!r} is not a UTF-8 name") from e
        addresses = self._resolve(addr.host, addr.port)
        if not addresses:
            raise ResolutionFailed(f"no address for {addr.host!r}")
        return addresses

    def _resolve(self, host: str, port: int) -> typing.List[SockAddr]:
        outcome: typing.Dict[str, typing.Any] = {}

        def lookup():
            try:
                outcome["addresses"] = self.resolve(host, port)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=lookup, name=f"resolve {host}", daemon=True)
        worker.start()
        worker.join(self.resolve_timeout)
        if worker.is_alive():
            raise ResolutionFailed(
                f"resolving {host!r} took longer than {self.resolve_timeout}s"
            )
        error = outcome.get("error")
        if isinstance(error, (OSError, UnicodeError)):
            raise ResolutionFailed(f"cannot resolve {host!r}: {error}") from error
        if error is not None:
            raise error
        return outcome["addresses"]

    def connect(self, addr: Addr) -> socket.socket:
        "connect to the first reachable address of ``addr``"
        last_error = None
        for family, sockaddr in self.addresses(addr):
            sock = None
            try:
                sock = socket.socket(family, socket.SOCK_STREAM)
                sock.settimeout(self.connect_timeout)
                sock.connect(sockaddr)
            except OSError as e:
                if sock is not None:
                    sock.close()
                logger.debug("connect to %s failed: %s", sockaddr, e)
                last_error = e
                continue
            logger.debug("connected to %s for %s:%d", sockaddr, addr.host, addr.port)
            return sock
        raise classify(last_error) from last_error
