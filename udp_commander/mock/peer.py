#!/usr/bin/env python3

import logging
import os
import selectors
import socket
from argparse import ArgumentParser
from queue import SimpleQueue
from threading import Thread

logger = logging.getLogger(__name__)


class Peer(Thread):
    def __init__(self, addr: tuple[str, int] | None = None, echo: bool = False) -> None:
        '''Thread that simulates the far end of a UDP conversation.

        Every datagram received is queued on self.received as (payload, sender).

        Parameters
        ----------
        addr
            IPv6 address and port to listen on, defaults to an ephemeral port on ::1
        echo
            Send every received datagram back to where it came from
        '''
        super().__init__(name=self.__class__.__name__, daemon=True)
        if addr is None:
            addr = ('::1', 0)
        self._s = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM | socket.SOCK_NONBLOCK)
        self._s.bind(addr)
        self._addr: tuple[str, int] = self._s.getsockname()[:2]
        self._r, self._w = os.pipe2(os.O_NONBLOCK)
        self.echo = echo
        self.received: SimpleQueue[tuple[bytes, tuple[str, int]]] = SimpleQueue()

    @property
    def addr(self) -> tuple[str, int]:
        return self._addr

    def sendto(self, payload: bytes, addr: tuple[str, int]) -> None:
        self._s.sendto(payload, addr)

    def _respond(self) -> bool:
        packet, addr = self._s.recvfrom(0xFFFF)
        sender = addr[:2]
        logger.info("%s %s", sender, packet)
        self.received.put((packet, sender))
        if self.echo:
            self._s.sendto(packet, addr)
        return False

    def run(self) -> None:
        sel = selectors.DefaultSelector()
        sel.register(self._s, selectors.EVENT_READ, self._respond)
        sel.register(self._r, selectors.EVENT_READ, lambda: True)

        stop = False
        while not stop:
            for key, _ in sel.select():
                if stop := key.data():
                    break

        sel.close()
        self._s.close()
        os.close(self._r)
        os.close(self._w)
        logger.info("Stopped")

    def close(self) -> None:
        os.write(self._w, b's')


if __name__ == '__main__':
    parser = ArgumentParser("UDP peer that prints and optionally echoes datagrams")
    parser.add_argument(
        "-o", "--host", default="::1", help="address to listen on, default is %(default)s"
    )
    parser.add_argument(
        "-p", "--port", default=1234, type=int, help="port to listen on, default is %(default)s"
    )
    parser.add_argument("-e", "--echo", action="store_true", help="Echo datagrams back")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    peer = Peer((args.host, args.port), echo=args.echo)
    peer.start()
    peer.join()
