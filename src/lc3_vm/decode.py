"""Decoder: LC-3 instruction words to registry keys.

Architecture:
    Instruction word → Decoder → (operation_key, params) → Registry → Execute

Every instruction is a 16-bit word. Bits [15:12] select the opcode and the
remaining twelve bits are operand fields whose layout depends on the opcode:

    ADD/AND  | op | DR  | SR1 | 0 | 00 | SR2 |   register mode
             | op | DR  | SR1 | 1 |   imm5    |   immediate mode
    NOT      | op | DR  | SR  | 111111       |
    BR       | op | nzp |   PCoffset9        |
    JMP      | op | 000 | BaseR | 000000     |   BaseR = 7 is RET
    JSR      | op | 1 |     PCoffset11       |
    JSRR     | op | 0 | 00 | BaseR | 000000  |
    LD/LDI/LEA/ST/STI | op | DR/SR | PCoffset9 |
    LDR/STR  | op | DR/SR | BaseR | offset6  |
    TRAP     | op | 0000 | trapvect8         |

Fields are pulled out with the small accessor functions below; immediate
and offset fields are sign-extended to 16-bit words before they reach the
registry, so primitives only ever add and mask.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from .traps import get_trap_dispatcher


WORD_MASK = 0xFFFF

# Opcodes
OP_BR = 0x0
OP_ADD = 0x1
OP_LD = 0x2
OP_ST = 0x3
OP_JSR = 0x4
OP_AND = 0x5
OP_LDR = 0x6
OP_STR = 0x7
OP_RTI = 0x8
OP_NOT = 0x9
OP_LDI = 0xA
OP_STI = 0xB
OP_JMP = 0xC
OP_RES = 0xD
OP_LEA = 0xE
OP_TRAP = 0xF

OPCODE_NAMES = (
    "BR", "ADD", "LD", "ST", "JSR", "AND", "LDR", "STR",
    "RTI", "NOT", "LDI", "STI", "JMP", "RES", "LEA", "TRAP",
)


# =============================================================================
# Sign extension and field accessors
# =============================================================================

def sign_extend(value: int, bit_count: int) -> int:
    """Extend a bit_count-wide two's-complement value to a 16-bit word.

    If bit (bit_count - 1) is set, every bit above it is set; otherwise the
    value is returned unchanged. Callers pass fields already masked to
    bit_count bits.
    """
    if (value >> (bit_count - 1)) & 1:
        value |= WORD_MASK << bit_count
    return value & WORD_MASK


def opcode_of(instr: int) -> int:
    return (instr >> 12) & 0xF


def dest_of(instr: int) -> int:
    """DR/SR field, bits [11:9]."""
    return (instr >> 9) & 0x7


def src1_of(instr: int) -> int:
    """SR1/SR field, bits [8:6]."""
    return (instr >> 6) & 0x7


base_of = src1_of


def src2_of(instr: int) -> int:
    return instr & 0x7


def imm_flag_of(instr: int) -> int:
    return (instr >> 5) & 0x1


def long_flag_of(instr: int) -> int:
    """JSR mode bit [11]: 1 = PC-relative JSR, 0 = JSRR."""
    return (instr >> 11) & 0x1


def cond_of(instr: int) -> int:
    """BR condition mask, bits [11:9] as n|z|p (same layout as COND)."""
    return (instr >> 9) & 0x7


def trap_vector_of(instr: int) -> int:
    return instr & 0xFF


def imm5_of(instr: int) -> int:
    return sign_extend(instr & 0x1F, 5)


def offset6_of(instr: int) -> int:
    return sign_extend(instr & 0x3F, 6)


def pc_offset9_of(instr: int) -> int:
    return sign_extend(instr & 0x1FF, 9)


def pc_offset11_of(instr: int) -> int:
    return sign_extend(instr & 0x7FF, 11)


# =============================================================================
# Decode results
# =============================================================================

@dataclass
class DecodeResult:
    """Result of instruction decode operation.

    Attributes:
        key: Operation key (e.g., "OP_ADD_IMM")
        params: Operation parameters dictionary
        valid: Whether decode succeeded
        error: Error message if decode failed
        raw_instruction: Original instruction word
    """
    key: str
    params: Dict = field(default_factory=dict)
    valid: bool = True
    error: Optional[str] = None
    raw_instruction: int = 0


class Decoder:
    """Bit-level decoder for the 16 LC-3 opcodes.

    Decoding is a pure function of the instruction word; the decoder holds
    no machine state. RTI, the reserved opcode, and TRAP with a vector the
    trap dispatcher has no routine for decode to OP_INVALID.
    """

    # Valid operation keys that can be emitted
    VALID_KEYS: Set[str] = {
        "OP_BR",
        "OP_ADD_REG",
        "OP_ADD_IMM",
        "OP_LD",
        "OP_ST",
        "OP_JSR",
        "OP_JSRR",
        "OP_AND_REG",
        "OP_AND_IMM",
        "OP_LDR",
        "OP_STR",
        "OP_NOT",
        "OP_LDI",
        "OP_STI",
        "OP_JMP",
        "OP_RET",
        "OP_LEA",
        "OP_TRAP",
        "OP_INVALID",
    }

    def __init__(self):
        self._traps = get_trap_dispatcher()

    def decode(self, instr: int) -> DecodeResult:
        """Decode an instruction word to operation key and parameters.

        Args:
            instr: 16-bit instruction word

        Returns:
            DecodeResult with operation key and parameters
        """
        instr &= WORD_MASK
        op = opcode_of(instr)

        if op == OP_ADD or op == OP_AND:
            name = OPCODE_NAMES[op]
            if imm_flag_of(instr):
                return self._result(f"OP_{name}_IMM", instr, dest=dest_of(instr),
                                    src1=src1_of(instr), imm=imm5_of(instr))
            return self._result(f"OP_{name}_REG", instr, dest=dest_of(instr),
                                src1=src1_of(instr), src2=src2_of(instr))

        if op == OP_NOT:
            return self._result("OP_NOT", instr, dest=dest_of(instr), src=src1_of(instr))

        if op == OP_BR:
            return self._result("OP_BR", instr, cond=cond_of(instr),
                                offset=pc_offset9_of(instr))

        if op == OP_JMP:
            base = base_of(instr)
            return self._result("OP_RET" if base == 7 else "OP_JMP", instr, base=base)

        if op == OP_JSR:
            if long_flag_of(instr):
                return self._result("OP_JSR", instr, offset=pc_offset11_of(instr))
            return self._result("OP_JSRR", instr, base=base_of(instr))

        if op in (OP_LD, OP_LDI, OP_LEA):
            return self._result(f"OP_{OPCODE_NAMES[op]}", instr, dest=dest_of(instr),
                                offset=pc_offset9_of(instr))

        if op in (OP_ST, OP_STI):
            return self._result(f"OP_{OPCODE_NAMES[op]}", instr, src=dest_of(instr),
                                offset=pc_offset9_of(instr))

        if op == OP_LDR:
            return self._result("OP_LDR", instr, dest=dest_of(instr),
                                base=base_of(instr), offset=offset6_of(instr))

        if op == OP_STR:
            return self._result("OP_STR", instr, src=dest_of(instr),
                                base=base_of(instr), offset=offset6_of(instr))

        if op == OP_TRAP:
            vector = trap_vector_of(instr)
            if not self._traps.is_known(vector):
                return self._invalid(instr, f"unknown trap vector 0x{vector:02X}")
            return self._result("OP_TRAP", instr, vector=vector)

        # RTI and the reserved opcode are not available to user programs
        return self._invalid(instr, f"unsupported opcode {OPCODE_NAMES[op]}")

    @staticmethod
    def _result(key: str, instr: int, **params) -> DecodeResult:
        return DecodeResult(key, params, True, raw_instruction=instr)

    @staticmethod
    def _invalid(instr: int, error: str) -> DecodeResult:
        return DecodeResult("OP_INVALID", {"raw": instr}, False, error=error,
                            raw_instruction=instr)
