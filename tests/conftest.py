# ruff: noqa: D103
import socket
from io import StringIO
from pathlib import Path
from queue import SimpleQueue

import pytest
import tomlkit
from tomlkit.toml_document import TOMLDocument

from udp_commander import mock
from udp_commander.config import Config
from udp_commander.stack import SocketStack
from udp_commander.udp import UdpCommands


@pytest.fixture
def good_toml() -> TOMLDocument:
    cfg = tomlkit.document()

    stack = tomlkit.table()
    stack['message_buffers'] = 4
    stack['message_size'] = 512

    shell = tomlkit.table()
    shell['prompt'] = 'udp> '
    shell['hex_chunk'] = 20
    shell['receive_window'] = 100
    shell['startup'] = ['open', 'bind :: 0']

    cfg['Stack'] = stack
    cfg['Shell'] = shell

    return cfg


@pytest.fixture
def good_config(tmp_path: Path, good_toml: TOMLDocument) -> Config:
    path = tmp_path / 'config.toml'
    with path.open('w+') as f:
        tomlkit.dump(good_toml, f)
        f.flush()
    return Config(path)


@pytest.fixture
def mock_stack() -> mock.MockStack:
    s = mock.MockStack(message_buffers=4)
    try:
        yield s
    finally:
        s.shutdown()


@pytest.fixture
def output() -> StringIO:
    return StringIO()


@pytest.fixture
def commands(mock_stack: mock.MockStack, output: StringIO) -> UdpCommands:
    return UdpCommands(mock_stack, output)


class LineSink:
    '''Text stream that queues each write, for output produced on another thread.'''

    def __init__(self) -> None:  # noqa: D107
        self.lines: SimpleQueue[str] = SimpleQueue()

    def write(self, text: str) -> int:
        self.lines.put(text)
        return len(text)

    def flush(self) -> None:
        pass


def ipv6_loopback() -> bool:
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as s:
            s.bind(('::1', 0))
    except OSError:
        return False
    return True


@pytest.fixture
def socket_stack() -> SocketStack:
    if not ipv6_loopback():
        pytest.skip("IPv6 loopback is unavailable")
    s = SocketStack(message_buffers=4)
    s.start()
    try:
        yield s
    finally:
        s.shutdown()


@pytest.fixture
def sink() -> LineSink:
    return LineSink()


@pytest.fixture
def peer(socket_stack: SocketStack) -> mock.Peer:  # noqa: ARG001
    p = mock.Peer()
    p.start()
    try:
        yield p
    finally:
        p.close()
        p.join()
