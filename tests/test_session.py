import socket
import threading

import pytest

from socksfree.config import Config
from socksfree.exceptions import ConnectFailed, ResolutionFailed
from socksfree.resolver import Connector
from socksfree.session import Session, Stage
from socksfree.socks5 import Addr

SUCCEEDED = b"\x05\x00\x00\x01\x00\x00\x00\x00\x00\x00"


def reply(code):
    return bytes([5, code, 0, 1, 0, 0, 0, 0, 0, 0])


def recv_exactly(sock, n):
    chunks = []
    while n:
        data = sock.recv(n)
        assert data, "peer closed early"
        chunks.append(data)
        n -= len(data)
    return b"".join(chunks)


def recv_all(sock):
    chunks = []
    while True:
        data = sock.recv(4096)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


class PairConnector:
    "hands out one end of a socketpair instead of dialing out"

    def __init__(self, error=None):
        self.error = error
        self.requests = []
        self.remote = None

    def connect(self, addr):
        self.requests.append(addr.to_tuple())
        if self.error:
            raise self.error
        local, self.remote = socket.socketpair()
        self.remote.settimeout(5)
        return local


def start_session(config=None, connector=None):
    config = config or Config(idle_timeout=5, handshake_timeout=5)
    client, server_side = socket.socketpair()
    client.settimeout(5)
    session = Session(server_side, config, connector or PairConnector())
    thread = threading.Thread(target=session.run)
    thread.start()
    return client, session, thread


def finish(client, session, thread):
    thread.join(5)
    assert not thread.is_alive()
    assert session.stage is Stage.closed
    client.close()


def connect_request(host="127.0.0.1", port=80, cmd=1):
    return b"\x05" + bytes([cmd]) + b"\x00" + Addr.from_tuple((host, port)).binary


def test_connect_and_relay():
    connector = PairConnector()
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00")
    assert recv_exactly(client, 2) == b"\x05\x00"
    client.sendall(connect_request("example.com", 443))
    assert recv_exactly(client, 10) == SUCCEEDED
    assert connector.requests == [("example.com", 443)]
    assert session.authenticated
    assert session.target.to_tuple() == ("example.com", 443)
    remote = connector.remote
    for i in range(2):
        client.sendall(b"hello %d" % i)
        assert recv_exactly(remote, 7) == b"hello %d" % i
        remote.sendall(b"world %d" % i)
        assert recv_exactly(client, 7) == b"world %d" % i
    remote.close()
    assert recv_all(client) == b""
    finish(client, session, thread)


def test_pipelined_client_data_reaches_target():
    connector = PairConnector()
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00" + connect_request() + b"GET / HTTP/1.0\r\n\r\n")
    assert recv_exactly(client, 12) == b"\x05\x00" + SUCCEEDED
    assert recv_exactly(connector.remote, 18) == b"GET / HTTP/1.0\r\n\r\n"
    client.close()
    assert recv_all(connector.remote) == b""
    thread.join(5)
    assert session.stage is Stage.closed


def test_bad_version():
    client, session, thread = start_session()
    client.sendall(b"\x04\x01\x00")
    assert recv_all(client) == b""
    finish(client, session, thread)


def test_auth_required_no_auth_offered():
    config = Config(username="user", password="pass", handshake_timeout=5)
    connector = PairConnector()
    client, session, thread = start_session(config, connector)
    client.sendall(b"\x05\x01\x00")
    assert recv_all(client) == b"\x05\xff"
    finish(client, session, thread)
    assert not session.authenticated
    assert connector.requests == []


def test_auth_success():
    config = Config(username="user", password="pass", handshake_timeout=5)
    connector = PairConnector()
    client, session, thread = start_session(config, connector)
    client.sendall(b"\x05\x02\x00\x02")
    assert recv_exactly(client, 2) == b"\x05\x02"
    client.sendall(b"\x01\x04user\x04pass")
    assert recv_exactly(client, 2) == b"\x01\x00"
    client.sendall(connect_request())
    assert recv_exactly(client, 10) == SUCCEEDED
    assert session.authenticated
    client.close()
    thread.join(5)
    assert session.stage is Stage.closed


def test_auth_failure():
    config = Config(username="user", password="pass", handshake_timeout=5)
    connector = PairConnector()
    client, session, thread = start_session(config, connector)
    client.sendall(b"\x05\x01\x02\x01\x04user\x04nope")
    assert recv_all(client) == b"\x05\x02\x01\x01"
    finish(client, session, thread)
    assert connector.requests == []


def test_bind_not_supported():
    connector = PairConnector()
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00" + connect_request(cmd=2))
    assert recv_all(client) == b"\x05\x00" + reply(0x07)
    finish(client, session, thread)
    assert connector.requests == []


def test_address_type_not_supported():
    client, session, thread = start_session()
    client.sendall(b"\x05\x01\x00\x05\x01\x00\x02")
    assert recv_all(client) == b"\x05\x00" + reply(0x08)
    finish(client, session, thread)


def test_request_bad_version():
    client, session, thread = start_session()
    client.sendall(b"\x05\x01\x00" + b"\x04" + connect_request()[1:])
    assert recv_all(client) == b"\x05\x00" + reply(0x01)
    finish(client, session, thread)


@pytest.mark.parametrize(
    "error, code",
    [
        (ResolutionFailed("nxdomain"), 0x04),
        (ConnectFailed(ConnectFailed.REFUSED), 0x05),
        (ConnectFailed(ConnectFailed.NETWORK_UNREACHABLE), 0x03),
        (ConnectFailed(ConnectFailed.TIMEOUT), 0x06),
        (ConnectFailed(ConnectFailed.OTHER), 0x01),
    ],
)
def test_connect_failures(error, code):
    client, session, thread = start_session(connector=PairConnector(error))
    client.sendall(b"\x05\x01\x00" + connect_request())
    assert recv_all(client) == b"\x05\x00" + reply(code)
    finish(client, session, thread)
    assert session.target_sock is None


def test_unresolvable_domain():
    def nxdomain(host, port):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    connector = Connector(connect_timeout=5, resolve=nxdomain)
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00" + connect_request("nowhere.invalid", 80))
    assert recv_all(client) == b"\x05\x00" + reply(0x04)
    finish(client, session, thread)


def test_refused_port():
    taken = socket.socket()
    taken.bind(("127.0.0.1", 0))
    port = taken.getsockname()[1]
    taken.close()
    client, session, thread = start_session(connector=Connector(connect_timeout=5))
    client.sendall(b"\x05\x01\x00" + connect_request("127.0.0.1", port))
    assert recv_all(client) == b"\x05\x00" + reply(0x05)
    finish(client, session, thread)


def test_client_gone_mid_greeting():
    client, session, thread = start_session()
    client.sendall(b"\x05\x02\x00")
    client.shutdown(socket.SHUT_WR)
    assert recv_all(client) == b""
    finish(client, session, thread)


def test_idle_relay_closes_both():
    connector = PairConnector()
    config = Config(idle_timeout=0.2, handshake_timeout=5)
    client, session, thread = start_session(config, connector)
    client.sendall(b"\x05\x01\x00" + connect_request())
    assert recv_exactly(client, 12) == b"\x05\x00" + SUCCEEDED
    assert recv_all(client) == b""
    assert recv_all(connector.remote) == b""
    finish(client, session, thread)


def test_close_from_outside():
    connector = PairConnector()
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00" + connect_request())
    assert recv_exactly(client, 12) == b"\x05\x00" + SUCCEEDED
    session.close()
    session.close()
    assert recv_all(client) == b""
    assert recv_all(connector.remote) == b""
    finish(client, session, thread)


def test_undecodable_domain():
    def resolve(host, port):
        raise AssertionError("name should not reach the resolver")

    connector = Connector(connect_timeout=5, resolve=resolve)
    client, session, thread = start_session(connector=connector)
    client.sendall(b"\x05\x01\x00" + b"\x05\x01\x00\x03\x02\xff\xfe\x00\x50")
    assert recv_all(client) == b"\x05\x00" + reply(0x04)
    finish(client, session, thread)


def test_request_timeout():
    config = Config(idle_timeout=5, handshake_timeout=0.2)
    connector = PairConnector()
    client, session, thread = start_session(config, connector)
    client.sendall(b"\x05\x01\x00" + connect_request()[:4])
    assert recv_all(client) == b"\x05\x00" + reply(0x01)
    finish(client, session, thread)
    assert connector.requests == []


def test_greeting_timeout():
    config = Config(idle_timeout=5, handshake_timeout=0.2)
    client, session, thread = start_session(config)
    client.sendall(b"\x05\x02")
    assert recv_all(client) == b""
    finish(client, session, thread)
