"""Command-line interface for thin pool metadata recovery."""

import argparse
import sys
from pathlib import Path
from typing import Callable

from pxtools import __version__
from pxtools.core.config import ConfigError, load_config
from pxtools.core.context import Context
from pxtools.core.logging import Console, ScriptLogger, get_log_path
from pxtools.core.prompt import AutoYesPrompter, InteractivePrompter
from pxtools.recovery.orchestrator import EXIT_FAILED, EXIT_INTERRUPTED, RecoveryOrchestrator
from pxtools.recovery.session import RecoverySession

PROG = "px-thin-recover"

EPILOG = """\
requirements:
  - run from INSIDE the PX container (PID 1 = supervisord)
  - PX should be in maintenance mode: pxctl service maintenance --enter
  - run in screen/tmux/nohup, large pools can take 1+ hours

examples:
  px-thin-recover pwx2
  nohup px-thin-recover pwx2 -y > /var/cores/recovery.log 2>&1 &
  screen -S recovery px-thin-recover pwx2

exit codes: 0 recovered or already healthy, 1 failed, 130 interrupted
"""


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Recover corrupted thin pool metadata for a Portworx volume group",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "vg_name",
        nargs="?",
        help="Volume group name (e.g., pwx2)",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Auto-confirm all prompts (use with nohup)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="YAML config file overriding system and user config",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"{PROG} {__version__}",
    )
    return parser


def main(
    argv: list[str] | None = None,
    context: Context | None = None,
    read: Callable[[], str] = input,
) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.vg_name:
        parser.print_usage(sys.stderr)
        print(f"{PROG}: error: vg_name is required", file=sys.stderr)
        return EXIT_FAILED

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"{PROG}: error: {e}", file=sys.stderr)
        return EXIT_FAILED

    log_path = get_log_path("thin_pool_recovery", base_path=Path(config.log_dir))
    with ScriptLogger("thin_pool_recovery", log_path=log_path) as logger:
        console = Console(logger=logger)
        prompter = AutoYesPrompter(console) if args.yes else InteractivePrompter(console, read=read)
        session = RecoverySession(
            vg_name=args.vg_name,
            config=config,
            context=context or Context(),
            console=console,
            prompter=prompter,
        )
        logger.info("Recovery started", vg=args.vg_name, auto_yes=args.yes)
        try:
            code = RecoveryOrchestrator(session).run()
        except KeyboardInterrupt:
            code = EXIT_INTERRUPTED
        logger.info("Recovery finished", exit_code=code)
        return code


if __name__ == "__main__":
    sys.exit(main())
