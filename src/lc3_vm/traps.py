"""Trap routines: the LC-3's built-in I/O services.

TRAP x20-x25 are serviced here directly in Python rather than by running
an operating-system image, each routine talking to the machine's terminal:

    GETC  (x20)  read one key, no echo, into R0
    OUT   (x21)  write the low byte of R0
    PUTS  (x22)  write the string at R0, one character per word
    IN    (x23)  prompt, read one key with echo, into R0
    PUTSP (x24)  write the string at R0, two characters per word
    HALT  (x25)  announce and stop the machine

Routines run synchronously; GETC and IN block the whole machine until the
terminal delivers a key.
"""

import logging
from typing import Callable, Dict, Optional

from .state import MachineState, R_R0, update_flags

logger = logging.getLogger(__name__)


TRAP_GETC = 0x20   # get character from keyboard, not echoed
TRAP_OUT = 0x21    # output a character
TRAP_PUTS = 0x22   # output a word string
TRAP_IN = 0x23     # get character from keyboard, echoed
TRAP_PUTSP = 0x24  # output a byte string
TRAP_HALT = 0x25   # halt the program

TRAP_NAMES: Dict[int, str] = {
    TRAP_GETC: "GETC",
    TRAP_OUT: "OUT",
    TRAP_PUTS: "PUTS",
    TRAP_IN: "IN",
    TRAP_PUTSP: "PUTSP",
    TRAP_HALT: "HALT",
}

IN_PROMPT = "Enter a character: "
HALT_MESSAGE = "HALT\n"


class TrapDispatcher:
    """Frozen table of trap routines keyed by trap vector."""

    def __init__(self):
        self._routines: Dict[int, Callable[[MachineState], None]] = {}
        self._frozen = False
        self.register(TRAP_GETC, self._trap_getc)
        self.register(TRAP_OUT, self._trap_out)
        self.register(TRAP_PUTS, self._trap_puts)
        self.register(TRAP_IN, self._trap_in)
        self.register(TRAP_PUTSP, self._trap_putsp)
        self.register(TRAP_HALT, self._trap_halt)
        self._frozen = True

    def register(self, vector: int, routine: Callable[[MachineState], None]) -> None:
        if self._frozen:
            raise RuntimeError("Cannot register trap routines: table is frozen")
        if vector in self._routines:
            raise ValueError(f"Trap routine already registered: 0x{vector:02X}")
        self._routines[vector] = routine

    def is_known(self, vector: int) -> bool:
        return vector in self._routines

    def dispatch(self, state: MachineState, vector: int) -> None:
        """Run the routine for `vector`.

        Raises:
            KeyError: If no routine is registered for the vector
        """
        if vector not in self._routines:
            raise KeyError(f"Unknown trap vector: 0x{vector:02X}")
        logger.debug("TRAP %s", TRAP_NAMES[vector])
        self._routines[vector](state)

    # =========================================================================
    # Routines
    # =========================================================================

    def _trap_getc(self, state: MachineState) -> None:
        state.registers.write(R_R0, state.terminal.read_char())
        update_flags(state.registers, R_R0)

    def _trap_out(self, state: MachineState) -> None:
        state.terminal.write_char(state.registers.read(R_R0) & 0xFF)
        state.terminal.flush()

    def _trap_puts(self, state: MachineState) -> None:
        terminal = state.terminal
        address = state.registers.read(R_R0)
        word = state.memory.read(address)
        while word:
            terminal.write_char(word & 0xFF)
            address = (address + 1) & 0xFFFF
            word = state.memory.read(address)
        terminal.flush()

    def _trap_in(self, state: MachineState) -> None:
        terminal = state.terminal
        terminal.write_text(IN_PROMPT)
        terminal.flush()
        char = terminal.read_char()
        terminal.write_char(char)
        terminal.flush()
        state.registers.write(R_R0, char)
        update_flags(state.registers, R_R0)

    def _trap_putsp(self, state: MachineState) -> None:
        terminal = state.terminal
        address = state.registers.read(R_R0)
        while True:
            word = state.memory.read(address)
            low, high = word & 0xFF, word >> 8
            if not low:
                break
            terminal.write_char(low)
            if not high:
                break
            terminal.write_char(high)
            address = (address + 1) & 0xFFFF
        terminal.flush()

    def _trap_halt(self, state: MachineState) -> None:
        state.terminal.write_text(HALT_MESSAGE)
        state.terminal.flush()
        state.halted = True
        logger.info("HALT after %d instructions", state.cycle_count + 1)


# Singleton dispatcher instance
_dispatcher: Optional[TrapDispatcher] = None


def get_trap_dispatcher() -> TrapDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = TrapDispatcher()
    return _dispatcher
