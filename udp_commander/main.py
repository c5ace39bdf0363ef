import logging
import sys
from argparse import ArgumentParser, Namespace, RawTextHelpFormatter
from pathlib import Path
from textwrap import dedent

from . import config
from .mock import MockStack
from .shell import Shell
from .stack import SocketStack, Stack
from .udp import UdpCommands

logger = logging.getLogger(__name__)


def handle_args(argv: list[str] | None = None) -> Namespace:  # noqa: D103
    parser = ArgumentParser(
        formatter_class=RawTextHelpFormatter,
        description="Interactive control of a single UDP socket",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help=dedent(
            f"""\
            Path to .toml config file. If dir will assume 'udp_commander.toml' in that dir
            Default: built in defaults, or --template writes to
            '{config.Config.dir / 'udp_commander.toml'}'"""
        ),
    )
    parser.add_argument(
        "--template",
        action="store_true",
        help="Generate a config template at the path specified by --config",
    )
    parser.add_argument(
        "-m",
        "--mock",
        action="store_true",
        help=dedent(
            """\
            Use a simulated (mocked) network stack, not real sockets.
            Every datagram sent is echoed straight back as if the peer replied"""
        ),
    )
    parser.add_argument(
        "-e",
        "--execute",
        action="append",
        metavar="COMMAND",
        help=dedent(
            """\
            Run a command line and exit instead of reading from stdin.
            Can be issued multiple times, e.g. -e open -e 'send ::1 1234 hello'"""
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        help="Output additional debugging information",
    )
    return parser.parse_args(argv)


def _cfgerr(args: Namespace, msg: str) -> None:
    # This function is always called from an exception handler
    logger.debug("Config error", exc_info=True)  # noqa: LOG014
    logger.error("In '%s': %s", args.config, msg)


def load_config(args: Namespace) -> config.Config | None:
    '''Build the config from a file and the command line, None if it can't be loaded.'''
    try:
        conf = config.Config(args.config)
    except config.ConfigNotFoundError as e:
        _cfgerr(
            args,
            f"the file is missing ({type(e.__cause__).__name__}). Initialize using --template",
        )
    except config.InvalidTomlError as e:
        _cfgerr(args, f"there is invalid toml: {e}\nPossibly an unquoted string?")
    except config.TemplateTextError as e:
        _cfgerr(args, f"key '{e}' still has template text. Replace <angle brackets>")
    except config.UnknownKeyError as e:
        _cfgerr(args, f"remove unknown keys: {' '.join(e.keys)}")
    except config.KeyValidationError as e:
        _cfgerr(args, f"key '{e.table}.{e.key}' has invalid type {e.actual}, expected {e.expect}")
    except config.RangeValidationError as e:
        _cfgerr(args, f"key '{e.table}.{e.key}' value {e.value} is out of range")
    else:
        # Favor command line values over config file values
        conf.mock = args.mock
        return conf
    return None


def main(argv: list[str] | None = None) -> None:  # noqa: D103
    args = handle_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)-25s: %(message)s',
    )

    if args.config is not None and args.config.is_dir():
        args.config /= "udp_commander.toml"

    if args.template:
        path = args.config or config.Config.dir / "udp_commander.toml"
        try:
            config.Config.template(path)
        except FileExistsError:
            logger.error("In '%s': delete existing file before creating template", path)
        else:
            logger.info("Config template generated at '%s'", path)
            logger.info("Edit '%s' <template text> before running again", path)
        return

    conf = load_config(args)
    if conf is None:
        return

    stack: Stack
    if conf.mock:
        stack = MockStack(conf.message_buffers, conf.message_size, echo=True)
    else:
        stack = SocketStack(conf.message_buffers, conf.message_size)
        stack.start()

    commands = UdpCommands(stack, sys.stdout, conf.hex_chunk, conf.receive_window)
    shell = Shell(commands, conf.prompt)
    try:
        if shell.run_all(conf.startup):
            if args.execute is not None:
                shell.run_all(args.execute)
            else:
                shell.run(sys.stdin)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        stack.shutdown()
