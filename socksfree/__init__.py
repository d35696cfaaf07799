"""`socksfree` is a SOCKS5 CONNECT proxy whose wire protocol is parsed \
the io-free way: generators describe the bytes they need, sockets feed them."""

import sys
import typing
from enum import IntEnum, auto
from collections import deque
from socket import SocketType
from struct import Struct

from .exceptions import ConnectionClosed, NoResult, ParseError, SocksError

__version__ = "0.1.0"
_wait = object()
_no_result = object()


class Traps(IntEnum):
    _read_struct = auto()
    _wait = auto()
    _get_parser = auto()


class State(IntEnum):
    _state_wait = auto()
    _state_next = auto()
    _state_end = auto()


class Parser:
    def __init__(self, gen: typing.Generator):
        self.gen = gen
        self._input = bytearray()
        self._output_events: typing.Deque = deque()
        self._res = _no_result
        self._mapping_stack: typing.Deque = deque()
        self._next_value = None
        self._last_trap: typing.Optional[tuple] = None
        self._state: State = State._state_wait
        self._process()

    def __repr__(self):
        return f"<{self.__class__.__qualname__}({self.gen})>"

    def __iter__(self):
        return self

    def __next__(self) -> typing.Any:
        if self._output_events:
            return self._output_events.popleft()
        raise StopIteration

    def parse(self, data: bytes, *, strict: bool = True) -> typing.Any:
        """
        parse bytes
        """
        self.send(data)
        if strict and self.has_more_data():
            raise ParseError("redundant data left")
        return self.get_result()

    def send(self, data: bytes = b"") -> None:
        """
        send data for parsing
        """
        self._input.extend(data)
        self._process()

    def respond(self, *, data: bytes = b"", result: typing.Any = _no_result) -> None:
        """produce some event data to interact with a stream:
        data:   bytes to send to the peer
        result: result to return
        """
        self._output_events.append((data, result))

    def run(self, sock: SocketType, bufsize: int = 1024) -> typing.Any:
        """drive the parser over a blocking socket until it produces a result.

        Raises *ConnectionClosed* if the peer hangs up while bytes are still
        expected. Bytes queued before the generator fails are written first.
        """
        data = b""
        while True:
            try:
                self.send(data)
            except SocksError:
                for to_send, result in self:
                    if to_send:
                        sock.sendall(to_send)
                raise
            for to_send, result in self:
                if to_send:
                    sock.sendall(to_send)
                if result is not _no_result:
                    return result
            data = sock.recv(bufsize)
            if not data:
                raise ConnectionClosed("peer closed the stream mid-message")

    @property
    def has_result(self) -> bool:
        return self._res is not _no_result

    def get_result(self) -> typing.Any:
        """
        raises *NoResult* exception if no result has been set
        """
        self._process()
        if not self.has_result:
            raise NoResult("no result")
        return self._res

    def set_result(self, result) -> None:
        self._res = result
        self.respond(result=result)

    def _process(self) -> None:
        if self._state is State._state_end:
            return
        self._state = State._state_next
        while self._state is State._state_next:
            self._next_state()

    def _next_state(self) -> None:
        if self._last_trap is None:
            try:
                trap, *args = self.gen.send(self._next_value)
            except StopIteration as e:
                self._state = State._state_end
                self.set_result(e.value)
                return
            except SocksError:
                self._state = State._state_end
                raise
            except Exception:
                self._state = State._state_end
                tb = sys.exc_info()[2]
                raise ParseError(f"{self._next_value!r}").with_traceback(tb)
            else:
                if not isinstance(trap, Traps):
                    self._state = State._state_end
                    raise RuntimeError(f"Expect Traps object, but got: {trap}")
        else:
            trap, *args = self._last_trap
        result = getattr(self, trap.name)(*args)
        if result is _wait:
            self._state = State._state_wait
            self._last_trap = (trap, *args)
        else:
            self._state = State._state_next
            self._next_value = result
            self._last_trap = None

    def readall(self) -> bytes:
        """
        retrieve data from input back
        """
        data = bytes(self._input)
        del self._input[:]
        return data

    def has_more_data(self) -> bool:
        "indicate whether input has some bytes left"
        return len(self._input) > 0

    def _wait(self) -> typing.Optional[object]:
        if not getattr(self, "_waiting", False):
            self._waiting = True
            return _wait
        self._waiting = False
        return None

    def _read_struct(self, struct_obj: Struct) -> typing.Union[object, tuple]:
        size = struct_obj.size
        if len(self._input) < size:
            return _wait
        result = struct_obj.unpack_from(self._input)
        del self._input[:size]
        return result

    def _get_parser(self) -> "Parser":
        return self


def read_struct(fmt: str) -> typing.Generator[tuple, tuple, tuple]:
    """
    read specific formatted data
    """
    return (yield (Traps._read_struct, Struct(fmt)))


def read_raw_struct(struct_obj: Struct) -> typing.Generator[tuple, tuple, tuple]:
    """
    read raw struct formatted data
    """
    return (yield (Traps._read_struct, struct_obj))


def wait() -> typing.Generator[tuple, bytes, typing.Optional[object]]:
    """
    wait for next send event
    """
    return (yield (Traps._wait,))


def get_parser() -> typing.Generator[tuple, Parser, Parser]:
    "get current parser object"
    return (yield (Traps._get_parser,))
