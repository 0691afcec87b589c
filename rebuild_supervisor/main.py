"""
Command-line driver for the rebuild supervisor.

Starts the program built from a target under the chosen notification mode,
then treats every line read from stdin as a detected change. EOF or Ctrl-C
terminates the program. A file watcher normally takes the place of the
stdin loop.
"""

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, TextIO

from .command import COMMANDS, Command, new_command
from .config import Config, config
from .errors import StartupFailure

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(cfg: Config = config):
    """Configure console logging and, if enabled, a rotating log file."""
    log_formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers = [console_handler]

    if cfg.log_file:
        file_handler = RotatingFileHandler(
            cfg.log_file,
            maxBytes=cfg.log_max_bytes,
            backupCount=cfg.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=cfg.log_level.upper(), handlers=handlers, force=True)


def parse_args(argv: list[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rebuild-supervisor",
        description="Run a build target and notify it of rebuilds",
    )
    parser.add_argument("--mode", choices=sorted(COMMANDS), default="notify")
    parser.add_argument("--startup-arg", action="append", default=[], dest="startup_args")
    parser.add_argument("--build-arg", action="append", default=[], dest="build_args")
    parser.add_argument("target")
    parser.add_argument("program_args", nargs=argparse.REMAINDER)
    args = parser.parse_args(argv)

    if args.program_args[:1] == ["--"]:
        args.program_args = args.program_args[1:]
    return args


def run(command: Command, changes: Iterable[str]) -> int:
    """Start the command, notify it once per change, then terminate it."""
    try:
        command.start()
    except StartupFailure as e:
        logger.error(f"Could not start {command.target}: {e}")
        return 1

    try:
        for _ in changes:
            logger.info(f"Change detected, rebuilding {command.target}")
            command.notify_of_changes()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        command.terminate()
    return 0


def main(argv: list[str] = None, stdin: TextIO = None) -> int:
    args = parse_args(argv)
    configure_logging(config)

    command = new_command(
        args.mode,
        args.target,
        startup_args=args.startup_args,
        build_args=args.build_args,
        program_args=args.program_args,
        termination_policy=config.policy(),
    )
    return run(command, stdin or sys.stdin)
