"""Terminal collaborators for the LC-3 keyboard and display.

The machine only ever talks to a terminal through four calls:

    key_available()  non-blocking poll, used by the keyboard status register
    read_char()      blocking read of one key, used by GETC and IN
    write_char(c)    one byte of output, used by OUT, PUTS, PUTSP, IN, HALT
    flush()          push buffered output to the host

HostTerminal binds these to the process's stdin/stdout and puts a TTY into
unbuffered, non-echoing mode for the duration of a `with` block.
ScriptedTerminal serves input from memory and collects output, for tests,
the web demo and other non-interactive runs.
"""

import abc
import logging
import os
import select
import signal
import sys
from collections import deque
from contextlib import contextmanager
from typing import Optional, Union

from .errors import HostIOError

logger = logging.getLogger(__name__)


class Terminal(abc.ABC):
    """Interface between the machine and a character terminal."""

    @abc.abstractmethod
    def key_available(self) -> bool:
        """Non-blocking: is a key waiting?"""

    @abc.abstractmethod
    def read_char(self) -> int:
        """Block until a key arrives and return its code."""

    @abc.abstractmethod
    def write_char(self, char: int) -> None:
        """Queue one output byte."""

    def write_text(self, text: str) -> None:
        for ch in text.encode("latin-1", errors="replace"):
            self.write_char(ch)

    def flush(self) -> None:
        pass

    @property
    def blocking(self) -> bool:
        """True while read_char() is waiting for the host."""
        return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.flush()
        return False


class ScriptedTerminal(Terminal):
    """In-memory terminal: keys come from a fixed script, output is collected.

    Args:
        input_data: Keys to deliver, in order (str is encoded as latin-1)
    """

    def __init__(self, input_data: Union[str, bytes] = b""):
        if isinstance(input_data, str):
            input_data = input_data.encode("latin-1", errors="replace")
        self._input = deque(input_data)
        self._output = bytearray()

    def key_available(self) -> bool:
        return bool(self._input)

    def read_char(self) -> int:
        if not self._input:
            raise HostIOError("terminal input exhausted")
        return self._input.popleft()

    def write_char(self, char: int) -> None:
        self._output.append(char & 0xFF)

    @property
    def output_bytes(self) -> bytes:
        return bytes(self._output)

    @property
    def output(self) -> str:
        return self._output.decode("latin-1")


class HostTerminal(Terminal):
    """The process's own stdin/stdout.

    Entering the context disables canonical mode and echo on a TTY stdin;
    leaving it restores the saved attributes however the block exits. ISIG
    stays enabled so Ctrl-C still delivers SIGINT.

    Args:
        stdin_fd: Input file descriptor (default: sys.stdin)
        stdout_fd: Output file descriptor (default: sys.stdout)
    """

    def __init__(self, stdin_fd: Optional[int] = None, stdout_fd: Optional[int] = None):
        self._stdin_fd = stdin_fd
        self._stdout_fd = stdout_fd
        self._saved_attrs = None
        self._pending: Optional[int] = None
        self._eof = False
        self._blocking = False
        self._out = bytearray()
        self._output_broken = False

    @property
    def stdin_fd(self) -> int:
        if self._stdin_fd is None:
            self._stdin_fd = sys.stdin.fileno()
        return self._stdin_fd

    @property
    def stdout_fd(self) -> int:
        if self._stdout_fd is None:
            self._stdout_fd = sys.stdout.fileno()
        return self._stdout_fd

    @property
    def blocking(self) -> bool:
        return self._blocking

    # -------------------------------------------------------------------------
    # Scoped raw mode
    # -------------------------------------------------------------------------

    def __enter__(self):
        fd = self.stdin_fd
        if not os.isatty(fd):
            logger.debug("stdin is not a TTY, leaving input mode unchanged")
            return self

        import termios

        try:
            self._saved_attrs = termios.tcgetattr(fd)
            attrs = termios.tcgetattr(fd)
            attrs[3] &= ~(termios.ICANON | termios.ECHO)
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        except termios.error as e:
            self._saved_attrs = None
            raise HostIOError(f"cannot configure terminal: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb):
        self.flush()
        if self._saved_attrs is not None:
            import termios

            try:
                termios.tcsetattr(self.stdin_fd, termios.TCSADRAIN, self._saved_attrs)
            except termios.error as e:
                logger.error("failed to restore terminal settings: %s", e)
            self._saved_attrs = None
        return False

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def key_available(self) -> bool:
        if self._pending is not None:
            return True
        if self._eof:
            return False
        if not select.select([self.stdin_fd], [], [], 0)[0]:
            return False
        # Readable may also mean EOF, so take the byte now.
        data = os.read(self.stdin_fd, 1)
        if not data:
            self._eof = True
            return False
        self._pending = data[0]
        return True

    def read_char(self) -> int:
        if self._pending is not None:
            char, self._pending = self._pending, None
            return char
        if self._eof:
            raise HostIOError("end of input")
        self.flush()
        self._blocking = True
        try:
            data = os.read(self.stdin_fd, 1)
        finally:
            self._blocking = False
        if not data:
            self._eof = True
            raise HostIOError("end of input")
        return data[0]

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def write_char(self, char: int) -> None:
        if not self._output_broken:
            self._out.append(char & 0xFF)

    def flush(self) -> None:
        if not self._out:
            return
        data, self._out = bytes(self._out), bytearray()
        try:
            while data:
                written = os.write(self.stdout_fd, data)
                data = data[written:]
        except OSError as e:
            # Output is best effort; the program keeps running.
            self._output_broken = True
            logger.warning("terminal output failed, discarding further output: %s", e)


@contextmanager
def handle_interrupts(cpu, terminal: Terminal):
    """Route SIGINT to a clean stop for the duration of a run.

    The handler asks the CPU to stop at its next fetch boundary. If the
    terminal is blocked waiting for a key, no fetch boundary will come, so
    the handler raises KeyboardInterrupt to abandon the read instead.
    """

    def on_sigint(signum, frame):
        cpu.request_stop()
        if terminal.blocking:
            raise KeyboardInterrupt

    previous = signal.signal(signal.SIGINT, on_sigint)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
