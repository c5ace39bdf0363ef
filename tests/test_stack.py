from ipaddress import IPv6Address
from threading import Event, Thread

import pytest
from conftest import LineSink

from udp_commander.error import AlreadyError, InvalidArgsError, InvalidStateError, SocketError
from udp_commander.mock import Peer
from udp_commander.stack import Message, MessagePool, SockAddr, SocketStack, Stack, UdpSocket
from udp_commander.udp import UdpCommands

TIMEOUT = 5


class TestSockAddr:
    def test_defaults(self) -> None:
        addr = SockAddr()
        assert addr.is_unspecified
        assert str(addr) == '[::]:0'

    @pytest.mark.parametrize('port', [-1, 65536, 1 << 32])
    def test_port_range(self, port: int) -> None:
        with pytest.raises(InvalidArgsError, match='out of range'):
            SockAddr(IPv6Address('::1'), port)

    def test_specified(self) -> None:
        assert not SockAddr(IPv6Address('::'), 1).is_unspecified
        assert not SockAddr(IPv6Address('::1'), 0).is_unspecified


class TestMessagePool:
    def test_pool(self) -> None:
        pool = MessagePool(message_buffers=2, message_size=8)
        first = pool.new_message()
        second = pool.new_message()
        assert pool.available_buffers == 0
        assert first.capacity == 8

        first.free()
        first.free()  # double free is ignored
        assert pool.available_buffers == 1
        second.free()
        assert pool.available_buffers == 2

    def test_freed_append(self) -> None:
        message = MessagePool().new_message()
        message.free()
        with pytest.raises(InvalidStateError):
            message.append(b'x')

    def test_abstract(self) -> None:
        with pytest.raises(TypeError):
            Stack()  # type: ignore[abstract]

    def test_read(self) -> None:
        message = Message(16, b'0123456789')
        assert message.read(2, 3) == b'234'
        assert message.read(8, 100) == b'89'
        message.offset = 4
        assert message.payload == b'456789'


class TestSocketStack:
    @pytest.fixture
    def commands(self, socket_stack: SocketStack, sink: LineSink) -> UdpCommands:
        return UdpCommands(socket_stack, sink)

    def test_send_to(self, commands: UdpCommands, peer: Peer) -> None:
        commands.process(['open'])
        commands.process(['bind', '::1', '0'])
        port = commands.socket.sockname.port
        assert port != 0

        commands.process(['send', peer.addr[0], str(peer.addr[1]), 'hello'])
        assert peer.received.get(timeout=TIMEOUT) == (b'hello', ('::1', port))

    def test_connected(self, commands: UdpCommands, peer: Peer) -> None:
        commands.process(['open'])
        commands.process(['connect', peer.addr[0], str(peer.addr[1])])
        commands.process(['send', '-s', '5'])
        commands.process(['send', '-x', '68656c6c6f'])
        assert peer.received.get(timeout=TIMEOUT)[0] == b'01234'
        assert peer.received.get(timeout=TIMEOUT)[0] == b'hello'

    def test_receive(self, commands: UdpCommands, peer: Peer, sink: LineSink) -> None:
        commands.process(['open'])
        commands.process(['bind', '::1', '0'])
        peer.sendto(b'hello world', ('::1', commands.socket.sockname.port))
        line = sink.lines.get(timeout=TIMEOUT)
        assert line == f'11 bytes from ::1 {peer.addr[1]} hello world\r\n'

    def test_echo(self, commands: UdpCommands, peer: Peer, sink: LineSink) -> None:
        peer.echo = True
        commands.process(['open'])
        commands.process(['connect', peer.addr[0], str(peer.addr[1])])
        commands.process(['send', 'ping'])
        assert sink.lines.get(timeout=TIMEOUT) == f'4 bytes from ::1 {peer.addr[1]} ping\r\n'

    def test_not_connected(self, commands: UdpCommands, socket_stack: SocketStack) -> None:
        commands.process(['open'])
        with pytest.raises(SocketError):
            commands.process(['send', 'hi'])
        assert socket_stack.available_buffers == socket_stack.message_buffers

    def test_unopened(self, commands: UdpCommands, socket_stack: SocketStack) -> None:
        with pytest.raises(InvalidStateError):
            commands.process(['bind', '::1', '0'])
        with pytest.raises(InvalidStateError):
            commands.process(['send', '::1', '1234', 'hi'])
        assert socket_stack.available_buffers == socket_stack.message_buffers
        # closing an unopened socket is fine
        commands.process(['close'])

    def test_reopen(self, commands: UdpCommands, peer: Peer) -> None:
        commands.process(['open'])
        with pytest.raises(AlreadyError):
            commands.process(['open'])
        commands.process(['close'])
        with pytest.raises(InvalidStateError):
            commands.process(['send', peer.addr[0], str(peer.addr[1]), 'closed'])
        commands.process(['open'])
        commands.process(['send', peer.addr[0], str(peer.addr[1]), 'again'])
        assert peer.received.get(timeout=TIMEOUT)[0] == b'again'

    def test_bind_in_use(self, commands: UdpCommands, peer: Peer) -> None:
        commands.process(['open'])
        with pytest.raises(SocketError) as e:
            commands.process(['bind', peer.addr[0], str(peer.addr[1])])
        assert isinstance(e.value.__cause__, OSError)

    def test_close_during_receive(self, socket_stack: SocketStack, peer: Peer) -> None:
        entered = Event()
        release = Event()

        def callback(*_args: object) -> None:
            entered.set()
            release.wait(TIMEOUT)

        udp = UdpSocket()
        socket_stack.open(udp, callback)
        socket_stack.bind(udp, SockAddr(IPv6Address('::1'), 0))
        peer.sendto(b'slow', ('::1', udp.sockname.port))
        assert entered.wait(TIMEOUT)

        # The callback is still blocked, close must not wait for it
        closer = Thread(target=socket_stack.close, args=(udp,))
        closer.start()
        closer.join(TIMEOUT)
        try:
            assert not closer.is_alive()
            assert not udp.is_open
        finally:
            release.set()

    def test_shutdown(self, commands: UdpCommands, socket_stack: SocketStack) -> None:
        commands.process(['open'])
        socket_stack.shutdown()
        assert not commands.socket.is_open
