"""lc3_vm: a virtual machine for the LC-3 educational computer.

The LC-3 is a 16-bit machine with eight general-purpose registers, a
program counter, three condition flags, 64K words of memory and sixteen
opcodes. This package runs pre-assembled LC-3 object images with the same
bit-level behavior as the hardware, including the memory-mapped keyboard
and the built-in trap routines.

Architecture:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
               |         |        |        |
            [PC++]   [bit fields] [OP_*]  [primitives, traps]

Modules:
    state: Register file, memory with keyboard registers, machine state
    decode: Field accessors, sign extension, instruction decoder
    registry: Instruction primitives keyed by operation key
    traps: GETC/OUT/PUTS/IN/PUTSP/HALT service routines
    cpu: Main LC3CPU fetch-decode-execute loop
    loader: Big-endian object image loading
    terminal: Host and scripted terminal collaborators
    errors: Exception hierarchy
"""

__version__ = "0.1.0"

from .state import MachineState, Memory, RegisterFile
from .registry import CPURegistry
from .decode import Decoder, sign_extend
from .cpu import LC3CPU
from .terminal import HostTerminal, ScriptedTerminal
from .errors import (
    CycleLimitExceeded,
    ExecutionInterrupted,
    HostIOError,
    IllegalInstructionError,
    ImageLoadError,
    LC3Error,
)

__all__ = [
    "MachineState", "Memory", "RegisterFile", "CPURegistry", "Decoder",
    "sign_extend", "LC3CPU", "HostTerminal", "ScriptedTerminal",
    "LC3Error", "ImageLoadError", "IllegalInstructionError",
    "CycleLimitExceeded", "ExecutionInterrupted", "HostIOError",
]
