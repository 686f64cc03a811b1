"""Machine state for the LC-3 virtual machine.

This module defines the storage the instruction set operates on:

State Components:
    - Register file: R0-R7, PC and COND, each a 16-bit unsigned word
    - Memory: 65,536 16-bit cells with memory-mapped keyboard registers
    - Halted: Execution termination flag
    - Cycle count: Total executed instructions

Unlike a pure data record, Memory has one side-effecting read: reading the
keyboard status register polls the terminal and latches a pending key into
the keyboard data register.
"""

from array import array
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .terminal import ScriptedTerminal, Terminal


WORD_MASK = 0xFFFF
MEMORY_SIZE = 1 << 16

# Register indices
R_R0 = 0
R_R1 = 1
R_R2 = 2
R_R3 = 3
R_R4 = 4
R_R5 = 5
R_R6 = 6
R_R7 = 7
R_PC = 8
R_COND = 9
R_COUNT = 10

REGISTER_NAMES = ("R0", "R1", "R2", "R3", "R4", "R5", "R6", "R7", "PC", "COND")

# Condition flags, exactly one is set in COND
FL_POS = 1 << 0
FL_ZRO = 1 << 1
FL_NEG = 1 << 2

PC_START = 0x3000

# Memory-mapped device registers
MR_KBSR = 0xFE00  # keyboard status, bit 15 = key available
MR_KBDR = 0xFE02  # keyboard data, low byte = key code
KBSR_READY = 1 << 15


class RegisterFile:
    """Ten 16-bit registers addressed by index or by name."""

    def __init__(self):
        self._regs: List[int] = [0] * R_COUNT

    def read(self, index: int) -> int:
        return self._regs[index]

    def write(self, index: int, value: int) -> None:
        self._regs[index] = value & WORD_MASK

    def get(self, name: str) -> int:
        """Get value of a register by name (R0-R7, PC, COND, case insensitive).

        Raises:
            KeyError: If register doesn't exist
        """
        return self._regs[self._index_of(name)]

    def set(self, name: str, value: int) -> None:
        """Set a register by name; the value is wrapped to 16 bits.

        Raises:
            KeyError: If register doesn't exist
        """
        self.write(self._index_of(name), value)

    def dump(self) -> Dict[str, int]:
        """Get a copy of all register values keyed by name."""
        return dict(zip(REGISTER_NAMES, self._regs))

    @staticmethod
    def _index_of(name: str) -> int:
        try:
            return REGISTER_NAMES.index(name.upper())
        except ValueError:
            raise KeyError(f"Invalid register: {name}") from None


class Memory:
    """65,536 words of memory with keyboard registers mapped at 0xFE00/0xFE02.

    Reads of MR_KBSR are computed: the terminal is polled (never blocking) and,
    if a key is pending, it is read into MR_KBDR and the ready bit is set.
    Every other address is plain storage.
    """

    def __init__(self, terminal: Optional[Terminal] = None):
        self.terminal = terminal if terminal is not None else ScriptedTerminal()
        self._cells = array("H", bytes(2 * MEMORY_SIZE))

    def read(self, address: int) -> int:
        address &= WORD_MASK
        if address == MR_KBSR:
            if self.terminal.key_available():
                self._cells[MR_KBSR] = KBSR_READY
                self._cells[MR_KBDR] = self.terminal.read_char() & 0xFF
            else:
                self._cells[MR_KBSR] = 0
        return self._cells[address]

    def write(self, address: int, value: int) -> None:
        self._cells[address & WORD_MASK] = value & WORD_MASK

    def peek(self, address: int) -> int:
        """Read a cell without device side effects."""
        return self._cells[address & WORD_MASK]

    def load(self, origin: int, words: Iterable[int]) -> int:
        """Copy words into memory starting at origin.

        Words that would land past 0xFFFF are dropped.

        Returns:
            Number of words stored
        """
        address = origin & WORD_MASK
        count = 0
        for word in words:
            if address >= MEMORY_SIZE:
                break
            self._cells[address] = word & WORD_MASK
            address += 1
            count += 1
        return count


def flag_for(value: int) -> int:
    """Condition flag describing a 16-bit result."""
    value &= WORD_MASK
    if value == 0:
        return FL_ZRO
    if value >> 15:
        return FL_NEG
    return FL_POS


def update_flags(registers: RegisterFile, index: int) -> None:
    """Set COND from the value just written to register `index`."""
    registers.write(R_COND, flag_for(registers.read(index)))


def flag_name(cond: int) -> str:
    return {FL_NEG: "N", FL_ZRO: "Z", FL_POS: "P"}.get(cond, "?")


@dataclass
class MachineState:
    """Complete state of one LC-3 machine.

    Attributes:
        registers: Register file (R0-R7, PC, COND)
        memory: Main memory, sharing the terminal for keyboard polling
        terminal: Host terminal used by trap routines
        halted: Whether the machine has stopped
        cycle_count: Number of instructions executed
    """
    terminal: Terminal = field(default_factory=ScriptedTerminal)
    registers: RegisterFile = field(default_factory=RegisterFile)
    memory: Optional[Memory] = None
    halted: bool = False
    cycle_count: int = 0

    def __post_init__(self):
        if self.memory is None:
            self.memory = Memory(self.terminal)

    @property
    def pc(self) -> int:
        return self.registers.read(R_PC)

    @pc.setter
    def pc(self, value: int) -> None:
        self.registers.write(R_PC, value)

    @property
    def cond(self) -> int:
        return self.registers.read(R_COND)

    def snapshot(self) -> dict:
        """Create a snapshot of the registers and run status for tracing.

        Memory is excluded for efficiency.
        """
        return {
            "registers": self.registers.dump(),
            "pc": self.pc,
            "cond": self.cond,
            "halted": self.halted,
            "cycle_count": self.cycle_count,
        }

    def __str__(self) -> str:
        regs = " ".join(
            f"{name}=0x{value:04X}" for name, value in self.registers.dump().items()
            if name not in ("PC", "COND")
        )
        status = "HALTED" if self.halted else ""
        return (f"[Cycle {self.cycle_count}] PC=0x{self.pc:04X} {regs} "
                f"COND={flag_name(self.cond)} {status}").rstrip()


def create_initial_state(terminal: Optional[Terminal] = None) -> MachineState:
    """Create power-on state: PC=0x3000, COND=Z, registers and memory zeroed."""
    state = MachineState(terminal=terminal if terminal is not None else ScriptedTerminal())
    state.registers.write(R_PC, PC_START)
    state.registers.write(R_COND, FL_ZRO)
    return state
