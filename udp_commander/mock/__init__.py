'''Contains simulated stacks and peers for testing.'''

from .peer import Peer
from .stack import Datagram, MockStack

__all__ = ["Datagram", "MockStack", "Peer"]
