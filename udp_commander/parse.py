'''Argument parsing helpers shared by the command handlers.

All helpers raise InvalidArgsError on malformed input so a handler can let the error
propagate straight back to the shell.
'''

import re
from ipaddress import AddressValueError, IPv6Address

from .error import InvalidArgsError

_HEX_DIGITS = frozenset('0123456789abcdefABCDEF')
# ASCII digits only, int() alone would also take underscores and other scripts' digits
_LONG = re.compile(r'[+-]?(0[xX][0-9a-fA-F]+|[0-9]+)')


def parse_long(text: str) -> int:
    '''Parse a signed integer, decimal or 0x prefixed hexadecimal.'''
    match = _LONG.fullmatch(text)
    if match is None:
        raise InvalidArgsError(f'not an integer: {text!r}')
    return int(text, 16 if match[1][:2] in ('0x', '0X') else 10)


def parse_unsigned_long(text: str) -> int:
    value = parse_long(text)
    if value < 0:
        raise InvalidArgsError(f'not an unsigned integer: {text!r}')
    return value


def parse_ip6_address(text: str) -> IPv6Address:
    try:
        return IPv6Address(text)
    except AddressValueError as e:
        raise InvalidArgsError(f'not an IPv6 address: {text!r}') from e


def hex2bin(text: str, max_length: int) -> bytes:
    '''Decode hex digits into at most max_length bytes.

    An odd number of digits is treated as having an implied leading zero, so the first
    digit alone becomes the first byte: ``'abc'`` decodes to ``b'\\x0a\\xbc'``. Decoding
    stops silently once max_length bytes are produced; the caller works out how much of
    the string was consumed.

    Parameters
    ----------
    text
        Hex digits, upper or lower case, no prefix or separators
    max_length
        Maximum number of bytes to produce
    '''
    out = bytearray()
    count = len(text) & 1
    byte = 0
    for char in text:
        if char not in _HEX_DIGITS:
            raise InvalidArgsError(f'invalid hex digit {char!r}')
        byte = (byte << 4) | int(char, 16)
        count += 1
        if count >= 2:
            out.append(byte)
            count = 0
            byte = 0
            if len(out) == max_length:
                break
    return bytes(out)
