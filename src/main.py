#!/usr/bin/env python3
# --- START OF FILE src/main.py ---
import argparse
import signal
import sys
import traceback
from typing import List, Optional

import constants
from debug_logging import is_debug_enabled, log_debug, log_error, set_debug_mode, set_quiet_mode
from errors import InvocationError, NbdAttachError
from orchestrator import AttachOptions, attach
from version import __app_description__, __version__, get_version_info


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad invocations with exit code 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"{self.prog}: error: {message}", file=sys.stderr)
        sys.exit(constants.EXIT_INVOCATION)


def build_parser() -> argparse.ArgumentParser:
    class RawDefaultsHelpFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
        pass

    parser = _ArgumentParser(
        prog="nbdattach",
        description=__app_description__,
        formatter_class=RawDefaultsHelpFormatter,
        epilog=(
            "Examples:\n"
            "  Attach in the background and print the device:\n"
            "    nbdattach ./bswap16 disk.img\n\n"
            "  Stay attached until Ctrl+C:\n"
            "    nbdattach -f ./bswap16 disk.img -s 1024\n\n"
            "  Script-friendly (prints only the device node):\n"
            "    dev=$(nbdattach -q -k ./detach.sh ./bswap16 disk.img)\n\n"
            "Exit codes: 0 success, 1 bad invocation or declined overwrite, 2 nbd module or\n"
            "nbd-client unavailable, 3 device or file access failure, 4 backend launch failure."
        ),
    )
    parser.add_argument('-f', dest='foreground', action='store_true',
                        help='Stay in the foreground; detach everything on Ctrl+C.')
    parser.add_argument('-q', dest='quiet', action='store_true',
                        help='Quiet: no diagnostics, print only the device node.')
    parser.add_argument('-l', dest='log_path', metavar='LOGFILE',
                        help='Backend log file (default: temp file when detached, stderr when in foreground).')
    parser.add_argument('-d', dest='device', metavar='DEVICE',
                        help='Device node to use (default: first free /dev/nbdN).')
    parser.add_argument('-k', dest='kill_script', metavar='KILLSCRIPT',
                        help='Where to write the teardown script.')
    parser.add_argument('-u', dest='socket_path', metavar='SOCKETFILE',
                        help='Unix socket the backend listens on (default: private temp path).')
    parser.add_argument('--timeout', type=float, metavar='SECONDS', default=None,
                        help='Give up if the backend socket does not appear in time (default: wait forever).')
    parser.add_argument('--debug', action='store_true', help='Enable verbose logging.')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('backend', help='Backend server executable.')
    parser.add_argument('backend_args', nargs=argparse.REMAINDER, help='Arguments passed to the backend.')
    return parser


def _raise_interrupt(signum, frame):
    """SIGTERM during start-up takes the same rollback path as Ctrl+C."""
    raise KeyboardInterrupt


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    set_debug_mode(args.debug)
    set_quiet_mode(args.quiet)
    info = get_version_info()
    log_debug("MAIN", f"{info['app_name']} {info['version']} ({info['license']})")

    try:
        if args.timeout is not None and args.timeout <= 0:
            raise InvocationError("--timeout must be positive")

        options = AttachOptions(
            backend=args.backend,
            backend_args=list(args.backend_args),
            foreground=args.foreground,
            quiet=args.quiet,
            log_path=args.log_path,
            device=args.device,
            kill_script=args.kill_script,
            socket_path=args.socket_path,
            ready_timeout=args.timeout,
        )
        previous = signal.signal(signal.SIGTERM, _raise_interrupt)
        try:
            return attach(options)
        finally:
            signal.signal(signal.SIGTERM, previous)
    except NbdAttachError as e:
        log_error("MAIN", str(e))
        return e.exit_code
    except KeyboardInterrupt:
        log_error("MAIN", "Interrupted during start-up; session rolled back.")
        return constants.EXIT_INTERRUPTED
    except Exception as e:
        if is_debug_enabled():
            log_error("MAIN", f"Unexpected error: {e}\n{traceback.format_exc()}")
        else:
            log_error("MAIN", f"Unexpected error: {e} (run with --debug for a traceback)")
        return constants.EXIT_LAUNCH


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()

# --- END OF FILE src/main.py ---
