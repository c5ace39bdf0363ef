import logging
from typing import NamedTuple

from ..error import AlreadyError, InvalidStateError, NoBufsError
from ..stack import Message, MessageInfo, ReceiveCallback, SockAddr, Stack, UdpSocket

logger = logging.getLogger(__name__)


class Datagram(NamedTuple):
    payload: bytes
    peer: SockAddr
    sock: SockAddr


class MockStack(Stack):
    def __init__(
        self,
        message_buffers: int = 16,
        message_size: int = 1280,
        socket_limit: int = 1,
        echo: bool = False,
    ) -> None:
        '''In memory stack for testing, nothing touches the network.

        Every sent datagram is recorded in self.sent. Inbound datagrams are simulated with
        deliver(), which calls the receive callback on the caller's thread.

        Parameters
        ----------
        message_buffers
            Number of outbound messages that can exist at once
        message_size
            Capacity in bytes of each outbound message
        socket_limit
            Number of sockets that can be open at once, open fails with NoBufsError beyond
        echo
            Deliver every sent datagram straight back to its socket as if the peer had
            replied with the same payload
        '''
        super().__init__(message_buffers, message_size)
        self.socket_limit = socket_limit
        self.echo = echo
        self.sent: list[Datagram] = []
        self._open: set[UdpSocket] = set()
        self._next_port = 49152

    @staticmethod
    def _require_open(udp: UdpSocket) -> None:
        if not udp.is_open:
            raise InvalidStateError('socket is not open')

    def _ephemeral(self, udp: UdpSocket) -> None:
        if udp.sockname.port == 0:
            udp.sockname = SockAddr(udp.sockname.address, self._next_port)
            self._next_port += 1

    def open(self, udp: UdpSocket, callback: ReceiveCallback) -> None:
        if udp.is_open:
            raise AlreadyError('socket is already open')
        if len(self._open) >= self.socket_limit:
            raise NoBufsError('no free sockets')
        udp.handle = object()
        udp.callback = callback
        udp.sockname = SockAddr()
        udp.peername = SockAddr()
        self._open.add(udp)
        logger.debug("Opened socket")

    def bind(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        self._require_open(udp)
        udp.sockname = sockaddr
        self._ephemeral(udp)
        logger.debug("Bound to %s", udp.sockname)

    def connect(self, udp: UdpSocket, sockaddr: SockAddr) -> None:
        self._require_open(udp)
        udp.peername = sockaddr
        self._ephemeral(udp)
        logger.debug("Connected to %s", udp.peername)

    def close(self, udp: UdpSocket) -> None:
        if not udp.is_open:
            return
        self._open.discard(udp)
        udp.handle = None
        udp.callback = None
        logger.debug("Closed socket")

    def send(self, udp: UdpSocket, message: Message, info: MessageInfo) -> None:
        self._require_open(udp)
        peer = udp.peername if info.peer.is_unspecified else info.peer
        if peer.is_unspecified:
            raise InvalidStateError('no destination and socket is not connected')
        self._ephemeral(udp)

        datagram = Datagram(message.payload, peer, udp.sockname)
        self.sent.append(datagram)
        logger.debug("Sent %d bytes to %s", len(datagram.payload), peer)
        message.free()

        if self.echo:
            self.deliver(udp, datagram.payload, peer)

    def deliver(self, udp: UdpSocket, payload: bytes, peer: SockAddr) -> None:
        '''Simulate a datagram from peer arriving at udp.'''
        if not udp.is_open or udp.callback is None:
            logger.debug("Dropped %d bytes from %s, socket closed", len(payload), peer)
            return
        message = Message(len(payload), payload)
        try:
            udp.callback(message, MessageInfo(peer=peer, sock=udp.sockname))
        finally:
            message.free()

    def shutdown(self) -> None:
        for udp in list(self._open):
            self.close(udp)
