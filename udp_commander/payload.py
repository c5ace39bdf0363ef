'''Builds outbound datagram payloads for the send command.'''

from enum import Enum

from .error import InvalidArgsError
from .parse import hex2bin
from .stack import Message

# Cycled through by auto sized payloads, 62 symbols
AUTO_SIZE_ALPHABET = b'0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz'

# Bytes decoded per pass of a hex string payload
HEX_CHUNK = 50


class PayloadType(Enum):
    '''Payload synthesis modes, valued by their send command flag.'''

    TEXT = '-t'
    AUTO_SIZE = '-s'
    HEX_STRING = '-x'

    @classmethod
    def from_flag(cls, flag: str) -> 'PayloadType | None':
        try:
            return cls(flag)
        except ValueError:
            return None


def write_text(message: Message, text: str) -> None:
    message.append(text.encode())


def write_auto_size(message: Message, length: int) -> None:
    '''Append length bytes of 0-9A-Za-z repeating, starting at 0.'''
    cursor = 0
    for _ in range(length):
        message.append(AUTO_SIZE_ALPHABET[cursor : cursor + 1])
        cursor = (cursor + 1) % len(AUTO_SIZE_ALPHABET)


def write_hex_string(message: Message, hex_string: str, chunk: int = HEX_CHUNK) -> None:
    '''Decode hex_string into message, at most chunk bytes at a time.

    Each pass decodes from the current position, an odd number of remaining digits
    means the first digit of the pass stands alone as a byte. The position then advances
    by exactly the digits that pass consumed so the next pass starts on a byte boundary.

    Raises InvalidArgsError if hex_string is empty or a pass decodes nothing. Anything
    already appended is left for the caller to discard along with the message.
    '''
    remaining = len(hex_string)
    if remaining == 0:
        raise InvalidArgsError('empty hex string')

    position = 0
    while remaining > 0:
        buf = hex2bin(hex_string[position:], chunk)
        if not buf:
            raise InvalidArgsError(f'no hex decoded at position {position}')

        consumed = len(buf) * 2
        if remaining & 1:
            consumed -= 1

        position += consumed
        remaining -= consumed
        message.append(buf)
