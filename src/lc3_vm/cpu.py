"""LC3CPU: fetch-decode-execute loop for the LC-3 virtual machine.

This module implements the full execution pipeline:
    MEMORY → FETCH → DECODE → KEY → REGISTRY → EXECUTE → STATE

Each step fetches the word at PC, increments PC, decodes the word to an
operation key, and runs the registry primitive for that key. The loop ends
on the HALT trap or on a fatal decode condition (RTI, the reserved opcode,
or an unknown trap vector).
"""

import logging
import sys
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, List, Optional, TextIO, Tuple, Union

from .decode import Decoder, DecodeResult, OPCODE_NAMES, opcode_of
from .errors import CycleLimitExceeded, ExecutionInterrupted, IllegalInstructionError
from .loader import load_image_bytes, read_image
from .registry import get_registry
from .state import FL_NEG, FL_POS, FL_ZRO, MachineState, create_initial_state, flag_name
from .terminal import ScriptedTerminal, Terminal

logger = logging.getLogger(__name__)


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Captures one fetch-decode-execute cycle for debugging.

    Attributes:
        cycle: Cycle number (0-indexed)
        address: Address the instruction was fetched from
        instruction: Raw instruction word
        decode_result: Result from the decoder
        pre_state: Snapshot before execution (None unless tracing)
        post_state: Snapshot after execution (None unless tracing)
        error: Error message if execution failed
    """
    cycle: int
    address: int
    instruction: int
    decode_result: DecodeResult
    pre_state: Optional[dict] = None
    post_state: Optional[dict] = None
    error: Optional[str] = None


class LC3CPU:
    """LC-3 virtual machine.

    Owns one MachineState (registers, memory, terminal) and drives it one
    instruction at a time. Several instances can coexist; nothing is shared
    between them except the frozen decoder and registry tables.

    Attributes:
        decoder: Decoder for instruction words
        registry: CPURegistry with the instruction primitives
        state: Current machine state
        trace: Most recent trace entries (empty unless tracing)
        max_cycles: Instruction limit before a forced halt, None for no limit
        fault: Fatal decode error that stopped the machine, if any
    """

    DEFAULT_TRACE_DEPTH = 1000

    def __init__(
        self,
        terminal: Optional[Terminal] = None,
        max_cycles: Optional[int] = None,
        trace: bool = False,
        trace_depth: int = DEFAULT_TRACE_DEPTH
    ):
        """Initialize the machine in its power-on state.

        Args:
            terminal: Keyboard/display collaborator (default: empty ScriptedTerminal)
            max_cycles: Safety limit on executed instructions (default: unlimited)
            trace: Record an execution trace
            trace_depth: Number of most recent trace entries to keep
        """
        self.terminal = terminal if terminal is not None else ScriptedTerminal()
        self.decoder = Decoder()
        self.registry = get_registry()
        self.max_cycles = max_cycles
        self.tracing = trace
        self.trace: Deque[ExecutionTraceEntry] = deque(maxlen=trace_depth)
        self.state: MachineState = create_initial_state(self.terminal)
        self.fault: Optional[IllegalInstructionError] = None
        self._stop_requested = False

    def reset(self) -> None:
        """Return to power-on state: registers and memory cleared, PC=0x3000."""
        self.state = create_initial_state(self.terminal)
        self.trace.clear()
        self.fault = None
        self._stop_requested = False

    def load_image(self, path: Union[str, Path]) -> Tuple[int, int]:
        """Load an image file into memory.

        Later loads overwrite earlier ones where their address ranges overlap.

        Returns:
            Tuple of (origin, words stored)

        Raises:
            ImageLoadError: If the file cannot be read or is malformed
        """
        return read_image(path, self.state.memory)

    def load_image_bytes(self, data: bytes, name: str = "<image>") -> Tuple[int, int]:
        """Load an in-memory image (origin word followed by content)."""
        return load_image_bytes(data, self.state.memory, name)

    def request_stop(self) -> None:
        """Ask the run loop to stop at the next fetch boundary."""
        self._stop_requested = True

    def step(self) -> ExecutionTraceEntry:
        """Execute a single instruction cycle.

        Performs: FETCH → DECODE → EXECUTE

        Returns:
            ExecutionTraceEntry with full cycle information

        Raises:
            RuntimeError: If the CPU is halted
            CycleLimitExceeded: If max_cycles instructions have already run
        """
        state = self.state
        if state.halted:
            raise RuntimeError("CPU is halted")

        if self.max_cycles is not None and state.cycle_count >= self.max_cycles:
            state.halted = True
            raise CycleLimitExceeded(self.max_cycles)

        pre_state = state.snapshot() if self.tracing else None

        # FETCH: read the word at PC, then advance PC past it
        address = state.pc
        instruction = state.memory.read(address)
        state.pc = address + 1

        # DECODE
        decode_result = self.decoder.decode(instruction)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("0x%04X: %04X %s %s", address, instruction,
                         decode_result.key, decode_result.params)

        # EXECUTE
        entry = ExecutionTraceEntry(
            cycle=state.cycle_count,
            address=address,
            instruction=instruction,
            decode_result=decode_result,
            pre_state=pre_state,
        )
        self.registry.execute(state, decode_result.key, decode_result.params)

        if not decode_result.valid:
            entry.error = decode_result.error
            self.fault = IllegalInstructionError(address, instruction, decode_result.error)
            logger.info("%s", self.fault)

        if self.tracing:
            entry.post_state = state.snapshot()
            self.trace.append(entry)

        return entry

    def run(self) -> List[ExecutionTraceEntry]:
        """Run the CPU until HALT.

        Returns:
            The retained execution trace (empty unless tracing)

        Raises:
            IllegalInstructionError: If a fatal decode condition stopped the machine
            ExecutionInterrupted: If request_stop() was called
            CycleLimitExceeded: If the max_cycles safety limit was reached
        """
        state = self.state
        while not state.halted:
            if self._stop_requested:
                state.halted = True
                logger.info("stop requested at PC=0x%04X", state.pc)
                raise ExecutionInterrupted(state.pc)
            self.step()

        if self.fault is not None:
            raise self.fault

        return list(self.trace)

    def get_register(self, reg: str) -> int:
        """Get value of a register by name (R0-R7, PC, COND)."""
        return self.state.registers.get(reg)

    def dump_registers(self) -> Dict[str, int]:
        """Get all register values keyed by name."""
        return self.state.registers.dump()

    def get_flags(self) -> Dict[str, bool]:
        """Get condition flags as N/Z/P booleans."""
        cond = self.state.cond
        return {
            "N": bool(cond & FL_NEG),
            "Z": bool(cond & FL_ZRO),
            "P": bool(cond & FL_POS),
        }

    def get_pc(self) -> int:
        return self.state.pc

    def get_cycle_count(self) -> int:
        return self.state.cycle_count

    def is_halted(self) -> bool:
        return self.state.halted

    def get_trace(self) -> List[ExecutionTraceEntry]:
        return list(self.trace)

    def print_trace(self, stream: Optional[TextIO] = None) -> None:
        """Print the retained execution trace in human-readable format."""
        out = stream if stream is not None else sys.stderr

        print("=" * 70, file=out)
        print("LC-3 EXECUTION TRACE", file=out)
        print("=" * 70, file=out)

        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            print(f"\n[Cycle {entry.cycle}] 0x{entry.address:04X}: "
                  f"{entry.instruction:04X} ({OPCODE_NAMES[opcode_of(entry.instruction)]}) {status}",
                  file=out)
            print(f"  Decoded Key: {entry.decode_result.key}", file=out)
            print(f"  Params: {entry.decode_result.params}", file=out)

            if entry.pre_state is None or entry.post_state is None:
                continue

            # Show register changes
            pre_regs = entry.pre_state["registers"]
            post_regs = entry.post_state["registers"]
            changes = []
            for reg, value in pre_regs.items():
                if reg in ("PC", "COND"):
                    continue
                if value != post_regs[reg]:
                    changes.append(f"{reg}: 0x{value:04X} → 0x{post_regs[reg]:04X}")
            if changes:
                print(f"  Changes: {', '.join(changes)}", file=out)
            if entry.pre_state["cond"] != entry.post_state["cond"]:
                print(f"  COND: {flag_name(entry.pre_state['cond'])} → "
                      f"{flag_name(entry.post_state['cond'])}", file=out)

            # Show PC change beyond the normal increment
            pre_pc = entry.pre_state["pc"]
            post_pc = entry.post_state["pc"]
            if post_pc != (pre_pc + 1) & 0xFFFF:
                print(f"  PC: 0x{pre_pc:04X} → 0x{post_pc:04X}", file=out)

        print("\n" + "=" * 70, file=out)
        print("FINAL STATE", file=out)
        print("=" * 70, file=out)
        self.print_summary(out)

    def print_summary(self, stream: Optional[TextIO] = None) -> None:
        """Print final registers, flags and cycle count."""
        out = stream if stream is not None else sys.stderr
        regs = self.dump_registers()
        print("  Registers: " + " ".join(
            f"{name}=0x{value:04X}" for name, value in regs.items() if name != "COND"),
            file=out)
        print(f"  Flags: {flag_name(self.state.cond)}", file=out)
        print(f"  Cycles: {self.get_cycle_count()}", file=out)
        print(f"  Halted: {self.is_halted()}", file=out)

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        return {
            "cycles": self.get_cycle_count(),
            "halted": self.is_halted(),
            "registers": self.dump_registers(),
            "flags": self.get_flags(),
            "pc": self.get_pc(),
            "trace_length": len(self.trace),
            "errors": [str(self.fault)] if self.fault else [],
        }
