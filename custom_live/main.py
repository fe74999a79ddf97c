import argparse
import sys
from pathlib import Path

from custom_live.actions import extract_actions, write_actions
from custom_live.config import settings
from custom_live.logging import LoggerFactory, setup_logging
from custom_live.storage import commands
from custom_live.storage.exceptions import (
    CustomLiveError,
    StateError,
    StepFailure,
    UserAbort,
)
from custom_live.storage.ownership import InvokingUser
from custom_live.storage.variant_store import VariantStore
from custom_live.ui.prompts import ConsolePrompter


def _add_common_arguments(parser):
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log raw output of external commands")
    parser.add_argument("--variants-dir", type=Path, help="Directory holding the variants")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")


def _prepare(args, tools):
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    commands.require_root()
    commands.require_tools(tools)
    root = args.variants_dir or settings.get_variants_dir()
    return VariantStore(root.resolve(), InvokingUser.from_environment())


def _report(error, log):
    """Print ``error`` for the operator and return the exit code."""
    log.opt(exception=error).debug(f"{type(error).__name__}: {error}")
    if isinstance(error, UserAbort):
        print(str(error), file=sys.stderr)
    elif isinstance(error, StepFailure):
        log.error(f"Step '{error.step}' failed: {error}")
    elif isinstance(error, StateError):
        log.error(f"{error}")
        log.error("The session state does not match the disk; re-run extraction to start over.")
    else:
        log.error(f"{error}")
    return error.exit_code


def extract_main(argv=None):
    parser = argparse.ArgumentParser(
        description="Extract a Debian Live ISO into a variant and customize it in a chroot"
    )
    parser.add_argument("iso", nargs="?", type=Path, help="Debian Live ISO (omit to list variants)")
    parser.add_argument("work_dir", nargs="?", type=Path, help="Directory for the working tree")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    log = LoggerFactory.for_system()
    prompter = ConsolePrompter()
    try:
        store = _prepare(args, commands.EXTRACT_TOOLS)
        if args.iso is None:
            extract_actions.list_and_reenter(store, prompter)
        else:
            extract_actions.begin_session(args.iso, store, prompter, args.work_dir)
    except CustomLiveError as error:
        return _report(error, log)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    return 0


def write_main(argv=None):
    parser = argparse.ArgumentParser(
        description="Recompress a customized variant and write it to a USB device"
    )
    parser.add_argument("variant", help="Variant name")
    parser.add_argument("device", help="Target block device, e.g. /dev/sdb")
    parser.add_argument("temp_dir", nargs="?", type=Path, help="Directory for temporary files")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    log = LoggerFactory.for_system()
    prompter = ConsolePrompter()
    try:
        store = _prepare(args, commands.WRITE_TOOLS)
        write_actions.finalize_to_media(args.variant, args.device, store, prompter, args.temp_dir)
    except CustomLiveError as error:
        return _report(error, log)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(extract_main())
