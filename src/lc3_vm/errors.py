"""Exception hierarchy for the LC-3 virtual machine.

Every failure the machine or its host collaborators can surface derives
from LC3Error, so callers (the CLI, the demo) can map each class to a
distinct exit status or message.
"""

from typing import Optional


class LC3Error(Exception):
    """Base class for all LC-3 virtual machine errors."""


class ImageLoadError(LC3Error):
    """A program image could not be opened or is malformed.

    Attributes:
        path: Path (or name) of the offending image
        reason: Human-readable cause
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class IllegalInstructionError(LC3Error):
    """Fatal decode condition: reserved opcode, RTI, or unknown trap vector.

    Attributes:
        address: Address the instruction was fetched from
        instruction: Raw 16-bit instruction word
        reason: Decoder's description of the fault
    """

    def __init__(self, address: int, instruction: int, reason: str):
        super().__init__(
            f"illegal instruction 0x{instruction:04X} at 0x{address:04X}: {reason}"
        )
        self.address = address
        self.instruction = instruction
        self.reason = reason


class CycleLimitExceeded(LC3Error):
    """The optional safety limit on executed instructions was reached."""

    def __init__(self, limit: int):
        super().__init__(f"Max cycles ({limit}) exceeded")
        self.limit = limit


class ExecutionInterrupted(LC3Error):
    """Execution was stopped by an external interrupt (SIGINT)."""

    def __init__(self, pc: Optional[int] = None):
        where = f" at PC=0x{pc:04X}" if pc is not None else ""
        super().__init__(f"execution interrupted{where}")
        self.pc = pc


class HostIOError(LC3Error):
    """The host terminal could not satisfy a request (e.g. input exhausted)."""
