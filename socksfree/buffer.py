import cython


class OverflowException(Exception):
    pass


class Buffer:
    """Fixed-size byte buffer for one relay direction.

    Bytes enter at ``head``; ``next()`` exposes the free space after it so a
    socket can ``recv_into`` it without copying, and ``pull()`` drains it.
    """

    def __init__(self, size: cython.int = 8192):
        if size < 2:
            raise ValueError("size must > 1")
        self.buf = bytearray(size)
        self.head = 0
        self.size = size

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(size={self.size}, head={self.head})"

    def is_full(self) -> bool:
        return self.head == self.size

    def next(self) -> memoryview:
        return memoryview(self.buf)[self.head :]

    def advance(self, nbytes):
        self.head = self.head + nbytes

    @cython.locals(nbytes=cython.int)
    def push_from_socket(self, sock) -> int:
        "receive into the free space, returns the byte count (0 on EOF)"
        if self.is_full():
            raise OverflowException
        nbytes = sock.recv_into(self.next())
        self.advance(nbytes)
        return nbytes

    def pull(self) -> bytearray:
        "take everything out of the buffer"
        res = self.buf[: self.head]
        self.head = 0
        return res
