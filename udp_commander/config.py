from dataclasses import InitVar, dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import tomlkit
from tomlkit.items import Table
from tomlkit.toml_document import TOMLDocument

from .payload import HEX_CHUNK
from .udp import RECEIVE_WINDOW


class ConfigError(Exception):
    pass


class KeyValidationError(ConfigError):
    def __init__(self, table: str | None, key: str, expect: str, actual: str) -> None:  # noqa: D107
        super().__init__(f"'{key}' invalid type {actual}")
        self.table = table
        self.key = key
        self.expect = expect
        self.actual = actual


class RangeValidationError(ConfigError):
    def __init__(  # noqa: D107
        self, table: str | None, key: str, value: Any, lower: int, upper: int | None  # noqa: ANN401
    ) -> None:
        super().__init__(f"'{table}.{key}'")
        self.table = table
        self.key = key
        self.value = value
        self.lower = lower
        self.upper = upper


class TemplateTextError(ConfigError):
    def __init__(self, table: str | None, key: str) -> None:  # noqa: D107
        super().__init__(f'{table}.{key}')
        self.table = table
        self.key = key


class UnknownKeyError(ConfigError):
    def __init__(self, keys: list[str]) -> None:  # noqa: D107
        super().__init__(' '.join(keys))
        self.keys = keys


class InvalidTomlError(ConfigError):
    pass


class ConfigNotFoundError(ConfigError):
    pass


def _pop_table(cfg: TOMLDocument, table: str) -> Table:
    try:
        entry = cfg.pop(table)
    except tomlkit.exceptions.NonExistentKey:
        return tomlkit.table()
    if not isinstance(entry, Table):
        raise UnknownKeyError([table])
    return entry


def _pop(table: Table, key: str, valtype: type, default: Any) -> Any:  # noqa: ANN401
    val = table.pop(key, default)
    # bool is an int subclass but never a valid count
    if not isinstance(val, valtype) or (valtype is int and isinstance(val, bool)):
        raise KeyValidationError(table.display_name, key, valtype.__name__, type(val).__name__)
    return val


def _pop_int(table: Table, key: str, default: int, lower: int, upper: int | None = None) -> int:
    value = int(_pop(table, key, int, default))
    if value < lower or (upper is not None and value > upper):
        raise RangeValidationError(table.display_name, key, value, lower, upper)
    return value


def _pop_commands(table: Table, key: str) -> list[str]:
    value = _pop(table, key, list, [])
    for i, command in enumerate(value):
        if not isinstance(command, str):
            raise KeyValidationError(
                table.display_name, f"{key}[{i}]", "str", type(command).__name__
            )
    # Strip the toml str subclass
    return [str(command) for command in value]


def _check_template_text(config: TOMLDocument) -> None:
    '''Ensure all template text has been removed.'''
    for name, table in config.items():
        if not isinstance(table, Table):
            continue
        for key, value in table.items():
            if isinstance(value, str) and '<' in value:
                raise TemplateTextError(name, key)
            if isinstance(value, list) and any(isinstance(v, str) and '<' in v for v in value):
                raise TemplateTextError(name, key)


@dataclass
class Config:
    path: InitVar[Path | None] = None

    dir: ClassVar[Path] = Path('~/.config/udp_commander')

    # Stack
    message_buffers: int = 16
    message_size: int = 1280

    # Shell
    prompt: str = '> '
    hex_chunk: int = HEX_CHUNK
    receive_window: int = RECEIVE_WINDOW
    startup: list[str] = field(default_factory=list)

    # Command line only
    mock: bool = False

    def __post_init__(self, path: Path | None) -> None:
        '''Load a config from a given file, or keep the defaults if path is None.

        Checks:
        - File exists and is valid toml
        - All template text removed
        - Tables, if they exist, are Tables
        - Keys, if they exist, have values that are the expected toml type and in range
        - No unexpected keys/all keys consumed

        Parameters
        ----------
        path
            Path to the config file, usually udp_commander.toml
        '''
        if path is None:
            return

        try:
            config = tomlkit.parse(path.expanduser().read_text())
        except tomlkit.exceptions.ParseError as e:
            raise InvalidTomlError(*e.args) from e
        except FileNotFoundError as e:
            raise ConfigNotFoundError from e
        except IsADirectoryError as e:
            raise ConfigNotFoundError from e

        _check_template_text(config)

        stack = _pop_table(config, 'Stack')
        self.message_buffers = _pop_int(stack, 'message_buffers', self.message_buffers, 1)
        self.message_size = _pop_int(stack, 'message_size', self.message_size, 1, 0xFFFF)

        shell = _pop_table(config, 'Shell')
        self.prompt = str(_pop(shell, 'prompt', str, self.prompt))
        self.hex_chunk = _pop_int(shell, 'hex_chunk', self.hex_chunk, 1)
        self.receive_window = _pop_int(shell, 'receive_window', self.receive_window, 2)
        self.startup = _pop_commands(shell, 'startup')

        # Ensure there's no extra keys
        extra = ['Stack.' + k for k in stack]
        extra.extend('Shell.' + k for k in shell)
        extra.extend(k for k in config)
        if extra:
            raise UnknownKeyError(extra)

    @classmethod
    def template(cls, path: Path) -> None:
        config = tomlkit.document()
        config.add(tomlkit.comment("Be sure to replace all <hint text> including angle brackets"))
        config.add(tomlkit.comment("Every field is optional, remove one to use its default"))

        stack = tomlkit.table()
        stack.add(tomlkit.comment("Outbound message pool, send fails with NoBufs when empty"))
        stack['message_buffers'] = cls.message_buffers
        stack['message_size'] = cls.message_size

        shell = tomlkit.table()
        shell['prompt'] = cls.prompt
        shell['hex_chunk'] = cls.hex_chunk
        shell['receive_window'] = cls.receive_window
        shell.add(tomlkit.comment("Commands run before the first prompt"))
        shell['startup'] = ['open', 'bind :: <local port>']

        config['Stack'] = stack
        config['Shell'] = shell

        path = path.expanduser()
        if path.exists():
            raise FileExistsError

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tomlkit.dumps(config))
