import logging
from collections.abc import Callable
from ipaddress import IPv6Address
from threading import Lock
from typing import TextIO

from .error import InvalidArgsError, ParseError
from .parse import parse_ip6_address, parse_long, parse_unsigned_long
from .payload import HEX_CHUNK, PayloadType, write_auto_size, write_hex_string, write_text
from .stack import Message, MessageInfo, SockAddr, Stack, UdpSocket

logger = logging.getLogger(__name__)

# Most of an inbound datagram that gets printed, less one for the terminator
RECEIVE_WINDOW = 1500


def _sockaddr(addr: str, port: str) -> SockAddr:
    return SockAddr(parse_ip6_address(addr), parse_long(port))


def _host(address: IPv6Address) -> str:
    # Without any %scope suffix
    return str(IPv6Address(int(address)))


class UdpCommands:
    def __init__(
        self,
        stack: Stack,
        output: TextIO,
        hex_chunk: int = HEX_CHUNK,
        receive_window: int = RECEIVE_WINDOW,
    ) -> None:
        '''The udp command set, controlling a single socket.

        Each command takes the already tokenized arguments following its keyword. Failures
        are raised as StackError subclasses, errors from the stack pass through untouched.

        Parameters
        ----------
        stack
            Provides the socket operations and outbound message buffers
        output
            Where help and inbound datagrams are written
        hex_chunk
            Bytes decoded per pass when sending a hex string payload
        receive_window
            Size of the buffer inbound datagrams are printed from, including the terminator
        '''
        self.stack = stack
        self.output = output
        self.hex_chunk = hex_chunk
        self.receive_window = receive_window
        self.socket = UdpSocket()
        # Inbound datagrams are written from the stack's thread
        self._output_lock = Lock()

    def write(self, text: str) -> None:
        with self._output_lock:
            self.output.write(text)
            self.output.flush()

    def process_help(self, _args: list[str]) -> None:
        for name, _ in COMMANDS:
            self.write(f'{name}\r\n')

    def process_bind(self, args: list[str]) -> None:
        if len(args) != 2:
            raise InvalidArgsError('usage: bind <address> <port>')
        self.stack.bind(self.socket, _sockaddr(*args))

    def process_connect(self, args: list[str]) -> None:
        if len(args) != 2:
            raise InvalidArgsError('usage: connect <address> <port>')
        self.stack.connect(self.socket, _sockaddr(*args))

    def process_close(self, _args: list[str]) -> None:
        self.stack.close(self.socket)

    def process_open(self, _args: list[str]) -> None:
        self.stack.open(self.socket, self.handle_receive)

    def process_send(self, args: list[str]) -> None:
        '''Send a datagram.

        Forms:
        - send <text>
        - send <-s|-x|-t> <value>
        - send <address> <port> <text>
        - send <address> <port> <-s|-x|-t> <value>

        Without an address the datagram goes to the connected peer. An unrecognized flag
        is skipped and the value sent as text.
        '''
        if not 1 <= len(args) <= 4:
            raise InvalidArgsError('send takes 1 to 4 arguments')

        info = MessageInfo()
        cur = 0
        payload_type = PayloadType.TEXT
        length = 0

        if len(args) > 2:
            info = MessageInfo(peer=_sockaddr(args[0], args[1]))
            cur = 2

        if len(args) in (2, 4):
            payload_type = PayloadType.from_flag(args[cur]) or PayloadType.TEXT
            cur += 1
            if payload_type is PayloadType.AUTO_SIZE:
                length = parse_unsigned_long(args[cur])

        message = self.stack.new_message()
        try:
            match payload_type:
                case PayloadType.TEXT:
                    write_text(message, args[cur])
                case PayloadType.AUTO_SIZE:
                    write_auto_size(message, length)
                case PayloadType.HEX_STRING:
                    write_hex_string(message, args[cur], self.hex_chunk)
            self.stack.send(self.socket, message, info)
        except Exception:
            message.free()
            raise

    def process(self, args: list[str]) -> None:
        if not args:
            self.process_help([])
            raise InvalidArgsError('missing command')

        for name, command in COMMANDS:
            if args[0] == name:
                logger.debug("Processing %s", args)
                command(self, args[1:])
                return
        raise ParseError(f'unknown command: {args[0]}')

    def handle_receive(self, message: Message, info: MessageInfo) -> None:
        '''Print an inbound datagram as text, e.g. "5 bytes from fe80::1 1234 hello".

        Called by the stack. At most receive_window - 1 bytes are shown and the text ends
        at the first NUL. The stack keeps ownership of message.
        '''
        length = message.length - message.offset
        data = message.read(message.offset, self.receive_window - 1)
        text = data.split(b'\0', 1)[0].decode(errors='replace')
        host = _host(info.peer.address)
        try:
            self.write(f'{length} bytes from {host} {info.peer.port} {text}\r\n')
        except (OSError, ValueError):
            logger.warning("Dropped output for datagram from %s", info.peer, exc_info=True)


COMMANDS: tuple[tuple[str, Callable[[UdpCommands, list[str]], None]], ...] = (
    ('help', UdpCommands.process_help),
    ('bind', UdpCommands.process_bind),
    ('close', UdpCommands.process_close),
    ('connect', UdpCommands.process_connect),
    ('open', UdpCommands.process_open),
    ('send', UdpCommands.process_send),
)
