import logging
import selectors
import socket

from .buffer import Buffer
from .exceptions import RelayTerminated

logger = logging.getLogger(__name__)


class Relay:
    """Copies bytes between two connected sockets until one of them stops.

    At most one chunk per direction is held in memory: a chunk is fully
    written to the peer before its source is read again. EOF or an error on
    either side, or ``idle_timeout`` seconds without traffic, ends both
    directions with `RelayTerminated`.
    """

    def __init__(
        self,
        client: socket.socket,
        target: socket.socket,
        *,
        idle_timeout: float = 300.0,
        chunk_size: int = 8192,
    ):
        self.client = client
        self.target = target
        self.idle_timeout = idle_timeout
        self.chunk_size = chunk_size

    def run(self) -> None:
        "never returns normally, always raises `RelayTerminated`"
        with selectors.DefaultSelector() as selector:
            for sock, peer, name in (
                (self.client, self.target, "client"),
                (self.target, self.client, "target"),
            ):
                try:
                    sock.settimeout(self.idle_timeout)
                    selector.register(
                        sock,
                        selectors.EVENT_READ,
                        (peer, name, Buffer(self.chunk_size)),
                    )
                except (OSError, ValueError) as e:
                    raise RelayTerminated(f"{name} socket unusable: {e}") from e
            while True:
                try:
                    events = selector.select(self.idle_timeout)
                except (OSError, ValueError) as e:
                    raise RelayTerminated(f"wait failed: {e}") from e
                if not events:
                    raise RelayTerminated(f"idle for {self.idle_timeout}s")
                for key, _ in events:
                    self._forward(key.fileobj, *key.data)

    def _forward(self, sock, peer, name: str, buf: Buffer) -> None:
        try:
            nbytes = buf.push_from_socket(sock)
        except OSError as e:
            raise RelayTerminated(f"{name} read failed: {e}") from e
        if nbytes == 0:
            raise RelayTerminated(f"{name} closed")
        data = buf.pull()
        try:
            peer.sendall(data)
        except OSError as e:
            raise RelayTerminated(f"write to peer of {name} failed: {e}") from e
        logger.debug("%d bytes from %s", nbytes, name)
