class StackError(Exception):
    '''Base for errors reported by the stack and the command handlers.

    Each subclass carries the numeric code and short name the shell prints, e.g.
    ``Error 7: InvalidArgs``.
    '''

    code = 1
    name = 'Failed'

    def __init__(self, msg: str = '') -> None:  # noqa: D107
        super().__init__(msg or self.name)


class SocketError(StackError):
    '''An operating system socket call failed, see __cause__.'''


class NoBufsError(StackError):
    code = 3
    name = 'NoBufs'


class ParseError(StackError):
    code = 6
    name = 'Parse'


class InvalidArgsError(StackError):
    code = 7
    name = 'InvalidArgs'


class InvalidStateError(StackError):
    code = 13
    name = 'InvalidState'


class AlreadyError(StackError):
    code = 24
    name = 'Already'
