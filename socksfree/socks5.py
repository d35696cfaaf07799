# references:
# rfc1928(SOCKS Protocol Version 5): https://www.ietf.org/rfc/rfc1928.txt
# rfc1929(Username/Password Authentication for SOCKS V5):
# https://tools.ietf.org/html/rfc1929
# handshake                                   server selection
# +----+----------+----------+                +----+--------+
# |VER | NMETHODS | METHODS  |                |VER | METHOD |
# +----+----------+----------+                +----+--------+
# | 1  |    1     | 1 to 255 |                | 1  |   1    |
# +----+----------+----------+                +----+--------+
# Username/Password Authentication            auth reply
# +----+------+----------+------+----------+  +----+--------+
# |VER | ULEN |  UNAME   | PLEN |  PASSWD  |  |VER | STATUS |
# +----+------+----------+------+----------+  +----+--------+
# | 1  |  1   | 1 to 255 |  1   | 1 to 255 |  | 1  |   1    |
# +----+------+----------+------+----------+  +----+--------+
# request
# +----+-----+-------+------+----------+----------+
# |VER | CMD |  RSV  | ATYP | DST.ADDR | DST.PORT |
# +----+-----+-------+------+----------+----------+
# | 1  |  1  | X'00' |  1   | Variable |    2     |
# +----+-----+-------+------+----------+----------+
# reply
# +----+-----+-------+------+----------+----------+
# |VER | REP |  RSV  | ATYP | BND.ADDR | BND.PORT |
# +----+-----+-------+------+----------+----------+
# | 1  |  1  | X'00' |  1   | Variable |    2     |
# +----+-----+-------+------+----------+----------+
import enum
import socket
import typing

from . import schema
from .exceptions import (
    ConnectFailed,
    ResolutionFailed,
    UnsupportedAddressType,
    UnsupportedCommand,
)

VERSION = 5
AUTH_VERSION = 1


class AuthMethod(enum.IntEnum):
    no_auth = 0
    gssapi = 1
    user_auth = 2
    no_acceptable_method = 255


class Cmd(enum.IntEnum):
    connect = 1
    bind = 2
    associate = 3


class AddrType(enum.IntEnum):
    ipv4 = 1
    domain = 3
    ipv6 = 4


class Rep(enum.IntEnum):
    succeeded = 0
    general_failure = 1
    not_allowed = 2
    network_unreachable = 3
    host_unreachable = 4
    connection_refused = 5
    ttl_expired = 6
    command_not_supported = 7
    address_type_not_supported = 8


ADDRESS_UNITS = {
    AddrType.ipv4: schema.Convert(
        schema.Bytes(4), encode=socket.inet_aton, decode=socket.inet_ntoa
    ),
    AddrType.ipv6: schema.Convert(
        schema.Bytes(16),
        encode=lambda x: socket.inet_pton(socket.AF_INET6, x),
        decode=lambda x: socket.inet_ntop(socket.AF_INET6, x),
    ),
    # bytes that are not UTF-8 decode to lone surrogates and encode back unchanged
    AddrType.domain: schema.LengthPrefixedString(
        schema.uint8, errors="surrogateescape"
    ),
}


class Addr(schema.BinarySchema):
    atyp: int = schema.uint8
    host: str = schema.Switch("atyp", ADDRESS_UNITS, error=UnsupportedAddressType)
    port: int = schema.uint16be

    @classmethod
    def from_tuple(cls, addr):
        try:
            return cls(AddrType.ipv4, *addr)
        except OSError:
            try:
                return cls(AddrType.ipv6, *addr)
            except OSError:
                return cls(AddrType.domain, *addr)

    def to_tuple(self) -> typing.Tuple[str, int]:
        return self.host, self.port


class Handshake(schema.BinarySchema):
    ver = schema.MustEqual(schema.uint8, VERSION)
    # method ids stay plain ints, clients may offer private ones
    methods = schema.LengthPrefixedObjectList(schema.uint8, schema.uint8)


class ServerSelection(schema.BinarySchema):
    ver = schema.MustEqual(schema.uint8, VERSION)
    method = schema.SizedIntEnum(schema.uint8, AuthMethod)


class UsernameAuth(schema.BinarySchema):
    auth_ver = schema.MustEqual(schema.uint8, AUTH_VERSION)
    username = schema.LengthPrefixedBytes(schema.uint8)
    password = schema.LengthPrefixedBytes(schema.uint8)


class UsernameAuthReply(schema.BinarySchema):
    auth_ver = schema.MustEqual(schema.uint8, AUTH_VERSION)
    status = schema.uint8


class RequestHeader(schema.BinarySchema):
    ver = schema.MustEqual(schema.uint8, VERSION)
    cmd = schema.uint8
    rsv = schema.uint8
    atyp = schema.uint8


class ClientRequest(schema.BinarySchema):
    ver = schema.MustEqual(schema.uint8, VERSION)
    cmd = schema.uint8
    rsv = schema.uint8
    addr = Addr


class Reply(schema.BinarySchema):
    ver = schema.MustEqual(schema.uint8, VERSION)
    rep = schema.SizedIntEnum(schema.uint8, Rep)
    rsv = schema.MustEqual(schema.uint8, 0)
    bind_addr = Addr


def read_greeting() -> typing.Generator[tuple, typing.Any, Handshake]:
    return (yield from Handshake)


def method_selection(method: AuthMethod) -> bytes:
    return ServerSelection(..., method).binary


def read_user_auth() -> typing.Generator[tuple, typing.Any, UsernameAuth]:
    return (yield from UsernameAuth)


def auth_result(ok: bool) -> bytes:
    return UsernameAuthReply(..., 0 if ok else 1).binary


def read_port() -> typing.Generator[tuple, typing.Any, int]:
    return (yield from schema.uint16be)


def read_address(atyp: int) -> typing.Generator[tuple, typing.Any, Addr]:
    "read DST.ADDR and DST.PORT once ATYP has been consumed"
    unit = Addr.host.select(atyp)
    host = yield from unit
    port = yield from read_port()
    return Addr(atyp, host, port)


def read_request() -> typing.Generator[tuple, typing.Any, ClientRequest]:
    header = yield from RequestHeader
    addr = yield from read_address(header.atyp)
    return ClientRequest(header.ver, header.cmd, header.rsv, addr)


def reply(rep: Rep, bound: typing.Tuple[str, int] = ("0.0.0.0", 0)) -> bytes:
    """Encode a reply. The bound address is reported as 0.0.0.0:0 unless
    the caller passes one."""
    return Reply(..., rep, ..., Addr(AddrType.ipv4, *bound)).binary


_CONNECT_FAILURES = {
    ConnectFailed.REFUSED: Rep.connection_refused,
    ConnectFailed.NETWORK_UNREACHABLE: Rep.network_unreachable,
    ConnectFailed.HOST_UNREACHABLE: Rep.host_unreachable,
    ConnectFailed.TIMEOUT: Rep.ttl_expired,
}


def reply_for(exc: Exception) -> Rep:
    "the reply code that best describes why a request failed"
    if isinstance(exc, UnsupportedCommand):
        return Rep.command_not_supported
    if isinstance(exc, UnsupportedAddressType):
        return Rep.address_type_not_supported
    if isinstance(exc, ResolutionFailed):
        return Rep.host_unreachable
    if isinstance(exc, ConnectFailed):
        return _CONNECT_FAILURES.get(exc.reason, Rep.general_failure)
    return Rep.general_failure
