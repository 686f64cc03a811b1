#!/usr/bin/env python3
"""LC-3 Virtual Machine Command Line Interface.

Run assembled LC-3 object images on the host terminal.

Usage:
    python main.py programs/2048.obj
    python main.py os.obj program.obj --summary
    python main.py hello.obj --trace --max-cycles 500 -vv

Exit status:
    0    program executed HALT
    1    an image could not be loaded
    2    usage error
    3    illegal instruction (RTI, reserved opcode, unknown trap vector)
    4    host terminal I/O error
    5    --max-cycles limit reached
    130  interrupted (Ctrl-C)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from lc3_vm import LC3CPU, HostTerminal
from lc3_vm.errors import (
    CycleLimitExceeded,
    ExecutionInterrupted,
    HostIOError,
    IllegalInstructionError,
    ImageLoadError,
)
from lc3_vm.terminal import Terminal, handle_interrupts

EXIT_OK = 0
EXIT_LOAD_ERROR = 1
EXIT_USAGE = 2
EXIT_ILLEGAL_INSTRUCTION = 3
EXIT_HOST_IO = 4
EXIT_CYCLE_LIMIT = 5
EXIT_INTERRUPTED = 130

logger = logging.getLogger("lc3_vm.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lc3",
        description="LC-3 Virtual Machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a program image
    python main.py rogue.obj

    # Load several images; later images overwrite overlapping addresses
    python main.py lib.obj main.obj

    # Print the last 50 executed instructions and the final registers
    python main.py hello.obj --trace --trace-depth 50
        """
    )

    parser.add_argument(
        "images",
        nargs="+",
        metavar="image-file",
        help="LC-3 object image(s) to load, in order"
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop after this many instructions (safety limit). Default: unlimited"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print the execution trace to stderr after the run"
    )
    parser.add_argument(
        "--trace-depth",
        type=int,
        default=LC3CPU.DEFAULT_TRACE_DEPTH,
        help=f"Number of trace entries to keep. Default: {LC3CPU.DEFAULT_TRACE_DEPTH}"
    )
    parser.add_argument(
        "--summary", "-s",
        action="store_true",
        help="Print final registers, flags and cycle count to stderr"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Log to stderr (-v: info, -vv: every instruction)"
    )
    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(levelname)s %(name)s: %(message)s"
    )


def main(argv: Optional[List[str]] = None, terminal: Optional[Terminal] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if args.max_cycles is not None and args.max_cycles < 1:
        parser.error("--max-cycles must be positive")
    if args.trace_depth < 1:
        parser.error("--trace-depth must be positive")

    terminal = terminal if terminal is not None else HostTerminal()
    cpu = LC3CPU(
        terminal=terminal,
        max_cycles=args.max_cycles,
        trace=args.trace,
        trace_depth=args.trace_depth
    )

    # Load images
    for image in args.images:
        try:
            cpu.load_image(image)
        except ImageLoadError as e:
            print(f"failed to load image: {image} ({e.reason})", file=sys.stderr)
            return EXIT_LOAD_ERROR

    # Run
    status = EXIT_OK
    try:
        with terminal, handle_interrupts(cpu, terminal):
            cpu.run()
    except IllegalInstructionError as e:
        print(f"\nlc3: {e}", file=sys.stderr)
        status = EXIT_ILLEGAL_INSTRUCTION
    except (ExecutionInterrupted, KeyboardInterrupt):
        print(file=sys.stderr)
        status = EXIT_INTERRUPTED
    except HostIOError as e:
        print(f"\nlc3: terminal error: {e}", file=sys.stderr)
        status = EXIT_HOST_IO
    except CycleLimitExceeded as e:
        print(f"\nlc3: {e}", file=sys.stderr)
        status = EXIT_CYCLE_LIMIT

    # Output
    if args.trace:
        cpu.print_trace(sys.stderr)
    elif args.summary:
        cpu.print_summary(sys.stderr)

    return status


if __name__ == "__main__":
    sys.exit(main())
