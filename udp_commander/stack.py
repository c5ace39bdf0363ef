import errno
import logging
import os
import selectors
import socket
from abc import ABCMeta, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from ipaddress import IPv6Address
from threading import Lock, Thread

from .error import AlreadyError, InvalidArgsError, InvalidStateError, NoBufsError, SocketError

logger = logging.getLogger(__name__)

# Largest possible UDP payload, so recvfrom never truncates a datagram
MAX_DATAGRAM = 0xFFFF


@dataclass(frozen=True)
class SockAddr:
    '''An IPv6 address and UDP port.'''

    address: IPv6Address = IPv6Address('::')
    port: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 0xFFFF:
            raise InvalidArgsError(f'port {self.port} out of range')

    @property
    def is_unspecified(self) -> bool:
        return self.address.is_unspecified and self.port == 0

    def __str__(self) -> str:
        return f'[{self.address}]:{self.port}'


@dataclass(frozen=True)
class MessageInfo:
    '''Addressing for a datagram.

    On send an unspecified peer means the peer the socket is connected to. On receive
    peer is the sender and sock is the local address it arrived on.
    '''

    peer: SockAddr = field(default_factory=SockAddr)
    sock: SockAddr = field(default_factory=SockAddr)


class Message:
    def __init__(
        self,
        capacity: int,
        data: bytes = b'',
        release: Callable[['Message'], None] | None = None,
    ) -> None:
        '''A growable datagram buffer with a read offset.

        Parameters
        ----------
        capacity
            Maximum number of bytes the message can hold, appending past this fails
        data
            Initial contents, used for inbound messages
        release
            Called once when the message is freed, returns the buffer to its pool
        '''
        self._data = bytearray(data)
        self.capacity = capacity
        self.offset = 0
        self._release = release
        self.freed = False

    @property
    def length(self) -> int:
        return len(self._data)

    def append(self, data: bytes) -> None:
        if self.freed:
            raise InvalidStateError('message already freed')
        if len(self._data) + len(data) > self.capacity:
            raise NoBufsError(f'message full at {self.capacity} bytes')
        self._data += data

    def read(self, offset: int, length: int) -> bytes:
        return bytes(self._data[offset : offset + length])

    @property
    def payload(self) -> bytes:
        return bytes(self._data[self.offset :])

    def free(self) -> None:
        if self.freed:
            return
        self.freed = True
        if self._release is not None:
            self._release(self)


ReceiveCallback = Callable[[Message, MessageInfo], None]


class UdpSocket:
    def __init__(self) -> None:
        '''An unopened socket handle, only ever manipulated through a Stack.'''
        self.handle: object | None = None
        self.callback: ReceiveCallback | None = None
        self.sockname = SockAddr()
        self.peername = SockAddr()

    @property
    def is_open(self) -> bool:
        return self.handle is not None


class MessagePool:
    def __init__(self, message_buffers: int = 16, message_size: int = 1280) -> None:
        '''Fixed number of outbound message buffers.

        Parameters
        ----------
        message_buffers
            Number of outbound messages that can exist at once
        message_size
            Capacity in bytes of each outbound message
        '''
        self.message_buffers = message_buffers
        self.message_size = message_size
        self._available = message_buffers
        self._pool_lock = Lock()

    @property
    def available_buffers(self) -> int:
        with self._pool_lock:
            return self._available

    def new_message(self) -> Message:
        with self._pool_lock:
            if self._available == 0:
                raise NoBufsError('no free message buffers')
            self._available -= 1
        return Message(self.message_size, release=self._release)

    def _release(self, _message: Message) -> None:
        with self._pool_lock:
            self._available += 1


class Stack(MessagePool, metaclass=ABCMeta):
    '''The socket operations a network stack provides, along with its message pool.'''

    @abstractmethod
    def open(self, udp: UdpSocket, callback: ReceiveCallback) -> None:
        pass

    @abstractmethod
    def bind(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        pass

    @abstractmethod
    def connect(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        pass

    @abstractmethod
    def close(self, udp: UdpSocket) -> None:
        pass

    @abstractmethod
    def send(self, udp: UdpSocket, message: Message, info: MessageInfo) -> None:
        '''Send message, taking ownership of it only if no exception is raised.'''

    @abstractmethod
    def shutdown(self) -> None:
        '''Close every open socket and release any resources.'''


def _sockaddr(addr: tuple) -> SockAddr:
    # AF_INET6 addresses are (host, port, flowinfo, scope_id), host may carry a %scope
    return SockAddr(IPv6Address(addr[0]), addr[1])


class SocketStack(Stack):
    def __init__(self, message_buffers: int = 16, message_size: int = 1280) -> None:
        '''Stack backed by operating system IPv6 UDP sockets.

        Inbound datagrams are read on a dedicated thread which invokes each socket's
        receive callback, without holding the stack lock. A datagram read just before
        close() may still reach its callback. Call start() before opening sockets and
        shutdown() when done.
        '''
        super().__init__(message_buffers, message_size)
        self._sel = selectors.DefaultSelector()
        self._r, self._w = os.pipe2(os.O_NONBLOCK)
        self._sel.register(self._r, selectors.EVENT_READ, None)
        # Held while touching an open socket so close() can't race a recvfrom
        self._lock = Lock()
        self._open: set[UdpSocket] = set()
        self._thread = Thread(target=self._run, name=self.__class__.__name__, daemon=True)
        self._stopped = False

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        stop = False
        while not stop:
            for key, _ in self._sel.select():
                if key.data is None:
                    stop = True
                    break
                self._receive(key.data)

        self._cleanup()
        logger.debug("Stopped")

    def _receive(self, udp: UdpSocket) -> None:
        with self._lock:
            sock = udp.handle
            if not isinstance(sock, socket.socket):
                return
            try:
                data, addr = sock.recvfrom(MAX_DATAGRAM)
            except BlockingIOError:
                return
            except OSError:
                logger.warning("Receive on %s failed", udp.sockname, exc_info=True)
                return
            callback = udp.callback
            info = MessageInfo(peer=_sockaddr(addr), sock=udp.sockname)

        # Unlocked, close() and open() never wait on a callback
        logger.debug("Received %d bytes from %s", len(data), info.peer)
        message = Message(len(data), data)
        try:
            if callback is not None:
                callback(message, info)
        except Exception:
            logger.exception("Receive callback failed:")
        finally:
            message.free()

    @staticmethod
    def _handle(udp: UdpSocket) -> socket.socket:
        if not isinstance(udp.handle, socket.socket):
            raise InvalidStateError('socket is not open')
        return udp.handle

    def open(self, udp: UdpSocket, callback: ReceiveCallback) -> None:
        if udp.is_open:
            raise AlreadyError('socket is already open')
        try:
            sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM | socket.SOCK_NONBLOCK)
        except OSError as e:
            if e.errno in (errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM):
                raise NoBufsError(str(e)) from e
            raise SocketError(str(e)) from e
        with self._lock:
            udp.handle = sock
            udp.callback = callback
            udp.sockname = SockAddr()
            udp.peername = SockAddr()
            self._open.add(udp)
            self._sel.register(sock, selectors.EVENT_READ, udp)
        logger.debug("Opened socket %d", sock.fileno())

    def bind(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        sock = self._handle(udp)
        try:
            sock.bind((str(sockaddr.address), sockaddr.port))
        except OSError as e:
            raise SocketError(str(e)) from e
        udp.sockname = _sockaddr(sock.getsockname())
        logger.debug("Bound to %s", udp.sockname)

    def connect(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        sock = self._handle(udp)
        try:
            sock.connect((str(sockaddr.address), sockaddr.port))
        except OSError as e:
            raise SocketError(str(e)) from e
        udp.peername = sockaddr
        udp.sockname = _sockaddr(sock.getsockname())
        logger.debug("Connected to %s", udp.peername)

    def close(self, udp: UdpSocket) -> None:
        if not udp.is_open:
            return
        with self._lock:
            sock = self._handle(udp)
            self._sel.unregister(sock)
            self._open.discard(udp)
            sock.close()
            udp.handle = None
            udp.callback = None
        logger.debug("Closed socket bound to %s", udp.sockname)

    def send(self, udp: UdpSocket, message: Message, info: MessageInfo) -> None:
        sock = self._handle(udp)
        payload = message.payload
        try:
            if info.peer.is_unspecified:
                sock.send(payload)
            else:
                sock.sendto(payload, (str(info.peer.address), info.peer.port))
        except OSError as e:
            raise SocketError(str(e)) from e
        dest = udp.peername if info.peer.is_unspecified else info.peer
        logger.debug("Sent %d bytes to %s", len(payload), dest)
        message.free()

    def _cleanup(self) -> None:
        self._sel.close()
        os.close(self._r)
        os.close(self._w)
        self._stopped = True

    def shutdown(self) -> None:
        for udp in list(self._open):
            self.close(udp)
        if self._stopped:
            return
        if self._thread.is_alive():
            os.write(self._w, b's')
            self._thread.join()
        else:
            self._cleanup()
