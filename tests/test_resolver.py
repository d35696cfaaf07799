import errno
import socket
import threading
import time

import pytest

from socksfree.exceptions import ConnectFailed, ResolutionFailed, UnsupportedCommand
from socksfree.resolver import Connector, check_command, classify
from socksfree.socks5 import Addr, Cmd


def free_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def test_check_command():
    check_command(Cmd.connect)
    for cmd in (Cmd.bind, Cmd.associate, 0, 9):
        with pytest.raises(UnsupportedCommand):
            check_command(cmd)


def test_addresses_literal():
    connector = Connector(resolve=lambda host, port: pytest.fail("resolver called"))
    assert connector.addresses(Addr.from_tuple(("10.0.0.1", 80))) == [
        (socket.AF_INET, ("10.0.0.1", 80))
    ]
    assert connector.addresses(Addr.from_tuple(("::1", 80))) == [
        (socket.AF_INET6, ("::1", 80, 0, 0))
    ]


def test_addresses_domain():
    calls = []

    def resolve(host, port):
        calls.append((host, port))
        return [(socket.AF_INET, ("192.0.2.7", port))]

    connector = Connector(resolve=resolve)
    assert connector.addresses(Addr.from_tuple(("example.com", 443))) == [
        (socket.AF_INET, ("192.0.2.7", 443))
    ]
    assert calls == [("example.com", 443)]


def test_resolution_failed():
    def nxdomain(host, port):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    with pytest.raises(ResolutionFailed):
        Connector(resolve=nxdomain).addresses(Addr.from_tuple(("nowhere.invalid", 80)))
    with pytest.raises(ResolutionFailed):
        Connector(resolve=lambda host, port: []).addresses(
            Addr.from_tuple(("nowhere.invalid", 80))
        )


def test_resolution_timeout():
    release = threading.Event()

    def stuck(host, port):
        release.wait(5)
        return [(socket.AF_INET, ("192.0.2.7", port))]

    connector = Connector(connect_timeout=5, resolve=stuck, resolve_timeout=0.1)
    assert connector.resolve_timeout == 0.1
    start = time.monotonic()
    with pytest.raises(ResolutionFailed):
        connector.addresses(Addr.from_tuple(("slow.example", 80)))
    assert time.monotonic() - start < 2
    release.set()
    assert Connector(connect_timeout=3).resolve_timeout == 3


def test_resolver_bug_propagates():
    def broken(host, port):
        raise KeyError(host)

    with pytest.raises(KeyError):
        Connector(resolve=broken).addresses(Addr.from_tuple(("example.com", 80)))


def test_undecodable_name():
    addr = Addr.parse(b"\x03\x02\xff\xfe\x00\x50")
    connector = Connector(resolve=lambda host, port: pytest.fail("resolver called"))
    with pytest.raises(ResolutionFailed):
        connector.addresses(addr)


def test_connect():
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]
    sock = Connector(connect_timeout=5).connect(Addr.from_tuple(("127.0.0.1", port)))
    peer, _ = listener.accept()
    sock.sendall(b"ping")
    assert peer.recv(4) == b"ping"
    for s in (sock, peer, listener):
        s.close()


def test_connect_falls_through_candidates():
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    good = listener.getsockname()[1]
    bad = free_port()

    def resolve(host, port):
        return [
            (socket.AF_INET, ("127.0.0.1", bad)),
            (socket.AF_INET, ("127.0.0.1", good)),
        ]

    sock = Connector(resolve=resolve).connect(Addr.from_tuple(("two.test", 1)))
    assert sock.getpeername() == ("127.0.0.1", good)
    sock.close()
    listener.close()


def test_connect_refused():
    with pytest.raises(ConnectFailed) as info:
        Connector(connect_timeout=5).connect(Addr.from_tuple(("127.0.0.1", free_port())))
    assert info.value.reason == ConnectFailed.REFUSED


@pytest.mark.parametrize(
    "error, reason",
    [
        (ConnectionRefusedError(errno.ECONNREFUSED, "refused"), ConnectFailed.REFUSED),
        (OSError(errno.ENETUNREACH, "unreachable"), ConnectFailed.NETWORK_UNREACHABLE),
        (OSError(errno.EHOSTUNREACH, "no route"), ConnectFailed.HOST_UNREACHABLE),
        (socket.timeout("timed out"), ConnectFailed.TIMEOUT),
        (OSError(errno.ETIMEDOUT, "timed out"), ConnectFailed.TIMEOUT),
        (OSError(errno.EACCES, "denied"), ConnectFailed.OTHER),
    ],
)
def test_classify(error, reason):
    assert classify(error).reason == reason
