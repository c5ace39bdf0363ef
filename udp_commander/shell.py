import logging
from collections.abc import Iterable
from typing import TextIO

from .error import StackError
from .udp import UdpCommands

logger = logging.getLogger(__name__)


class Shell:
    def __init__(self, commands: UdpCommands, prompt: str = '> ') -> None:
        '''Line oriented front end for the udp commands.

        Lines are split on whitespace and handed to the command set. Each command reports
        "Done" or "Error <code>: <name>" once it finishes.

        Parameters
        ----------
        commands
            The command set to run, output goes to its output stream
        prompt
            Printed before each line when reading interactively
        '''
        self.commands = commands
        self.prompt = prompt

    def execute(self, line: str) -> bool:
        '''Run a single command line, returns False if the shell should exit.'''
        args = line.split()
        if not args:
            return True
        if args[0] in ('exit', 'quit'):
            return False

        try:
            self.commands.process(args)
        except StackError as e:
            logger.info("%s: %s", args[0], e)
            self.commands.write(f'Error {e.code}: {e.name}\r\n')
        else:
            self.commands.write('Done\r\n')
        return True

    def run_all(self, lines: Iterable[str]) -> bool:
        '''Run lines in order, returns False if one of them asked to exit.'''
        return all(self.execute(line) for line in lines)

    def run(self, stream: TextIO) -> None:
        interactive = stream.isatty()
        while True:
            if interactive:
                self.commands.write(self.prompt)
            line = stream.readline()
            if not line or not self.execute(line):
                break
