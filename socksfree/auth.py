import hmac
import logging
import typing

from . import get_parser, socks5
from .exceptions import AuthenticationFailed, NoAcceptableMethods
from .socks5 import AuthMethod

logger = logging.getLogger(__name__)


class Authenticator:
    """Chooses an authentication method from what the client offers and runs
    that method's sub-negotiation.

    Without credentials the server is open and only accepts ``no_auth``;
    with credentials it only accepts RFC 1929 username/password.
    """

    def __init__(
        self,
        username: typing.Optional[bytes] = None,
        password: typing.Optional[bytes] = None,
    ):
        if (username is None) != (password is None):
            raise ValueError("username and password go together")
        self.username = username
        self.password = password

    @classmethod
    def from_config(cls, config) -> "Authenticator":
        if not config.auth_required:
            return cls()
        return cls(config.username.encode(), config.password.encode())

    @property
    def required(self) -> bool:
        return self.username is not None

    def select(self, methods: typing.Iterable[int]) -> AuthMethod:
        wanted = AuthMethod.user_auth if self.required else AuthMethod.no_auth
        if wanted in methods:
            return wanted
        return AuthMethod.no_acceptable_method

    def check(self, username: bytes, password: bytes) -> bool:
        if not self.required:
            return True
        user_ok = hmac.compare_digest(username, self.username)
        pass_ok = hmac.compare_digest(password, self.password)
        return user_ok and pass_ok

    def negotiate(self, methods: typing.List[int]):
        """Parser generator: writes the method selection and, for
        username/password, reads the credentials and writes the status."""
        parser = yield from get_parser()
        method = self.select(methods)
        parser.respond(data=socks5.method_selection(method))
        if method is AuthMethod.no_acceptable_method:
            raise NoAcceptableMethods(f"offered methods {methods} not acceptable")
        if method is AuthMethod.user_auth:
            auth = yield from socks5.read_user_auth()
            ok = self.check(auth.username, auth.password)
            parser.respond(data=socks5.auth_result(ok))
            if not ok:
                raise AuthenticationFailed(f"bad credentials for {auth.username!r}")
            logger.debug("user %r authenticated", auth.username)
        return method
