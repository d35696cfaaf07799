class SocksError(Exception):
    "base class of every failure that ends a session"


class ProtocolError(SocksError):
    "the peer sent bytes that do not follow the protocol"


class ParseError(ProtocolError):
    pass


class NoResult(Exception):
    pass


class ConnectionClosed(SocksError):
    "the peer closed the stream before the expected bytes arrived"


class UnsupportedAddressType(SocksError):
    pass


class UnsupportedCommand(SocksError):
    pass


class AuthenticationFailed(SocksError):
    pass


class NoAcceptableMethods(AuthenticationFailed):
    "none of the offered methods matches the server policy"


class ResolutionFailed(SocksError):
    pass


class ConnectFailed(SocksError):
    REFUSED = "refused"
    NETWORK_UNREACHABLE = "network_unreachable"
    HOST_UNREACHABLE = "host_unreachable"
    TIMEOUT = "timeout"
    OTHER = "other"

    def __init__(self, reason: str, *args):
        super().__init__(reason, *args)
        self.reason = reason


class RelayTerminated(SocksError):
    "normal end of a relay, raised once either direction stops"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
