"""Tests for sign extension, field accessors and the decoder."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from lc3_vm.decode import (
    Decoder, OPCODE_NAMES, cond_of, dest_of, imm5_of, offset6_of, opcode_of,
    pc_offset11_of, pc_offset9_of, sign_extend, src1_of, src2_of, trap_vector_of,
)
from lc3_vm.registry import get_registry
from lc3_vm.traps import get_trap_dispatcher

from lc3_encoding import (
    add_imm, add_reg, and_imm, and_reg, br, jmp, jsr, jsrr, ld, ldi, ldr, lea,
    not_, ret, st, sti, str_, trap,
)


class TestSignExtend:
    """Test two's-complement widening to 16 bits."""

    @pytest.mark.parametrize("bits", [5, 6, 9, 11])
    def test_non_negative_values_unchanged(self, bits):
        for value in range(0, 1 << (bits - 1)):
            assert sign_extend(value, bits) == value

    @pytest.mark.parametrize("bits", [5, 6, 9, 11])
    def test_negative_values_fill_high_bits(self, bits):
        for value in range(1 << (bits - 1), 1 << bits):
            result = sign_extend(value, bits)
            assert result & ((1 << bits) - 1) == value
            assert result >> bits == (0xFFFF >> bits)

    @pytest.mark.parametrize("bits", [5, 6, 9, 11])
    def test_idempotent(self, bits):
        for value in range(1 << bits):
            once = sign_extend(value, bits)
            assert sign_extend(once, bits) == once

    def test_examples(self):
        assert sign_extend(0x1F, 5) == 0xFFFF
        assert sign_extend(0x10, 5) == 0xFFF0
        assert sign_extend(0x0F, 5) == 0x000F
        assert sign_extend(0x100, 9) == 0xFF00
        assert sign_extend(0x400, 11) == 0xFC00


class TestFieldAccessors:
    """Test bit-field extraction."""

    def test_operate_fields(self):
        instr = add_reg(3, 5, 6)
        assert opcode_of(instr) == 0x1
        assert dest_of(instr) == 3
        assert src1_of(instr) == 5
        assert src2_of(instr) == 6

    def test_immediates_are_sign_extended(self):
        assert imm5_of(add_imm(0, 0, -1)) == 0xFFFF
        assert imm5_of(add_imm(0, 0, 15)) == 15
        assert offset6_of(ldr(0, 0, -32)) == 0xFFE0
        assert pc_offset9_of(ld(0, -256)) == 0xFF00
        assert pc_offset11_of(jsr(-1)) == 0xFFFF

    def test_cond_and_vector(self):
        assert cond_of(br(1, 0, 1, 0)) == 0b101
        assert trap_vector_of(trap(0x25)) == 0x25

    def test_opcode_names(self):
        assert len(OPCODE_NAMES) == 16
        assert OPCODE_NAMES[0x8] == "RTI"
        assert OPCODE_NAMES[0xD] == "RES"


class TestDecoder:
    """Test instruction words map to the right keys and params."""

    @pytest.fixture
    def decoder(self):
        return Decoder()

    @pytest.mark.parametrize("instr,key", [
        (add_reg(1, 2, 3), "OP_ADD_REG"),
        (add_imm(1, 2, 3), "OP_ADD_IMM"),
        (and_reg(1, 2, 3), "OP_AND_REG"),
        (and_imm(1, 2, 3), "OP_AND_IMM"),
        (not_(1, 2), "OP_NOT"),
        (br(1, 1, 1, 4), "OP_BR"),
        (jmp(2), "OP_JMP"),
        (ret(), "OP_RET"),
        (jsr(10), "OP_JSR"),
        (jsrr(4), "OP_JSRR"),
        (ld(0, 1), "OP_LD"),
        (ldi(0, 1), "OP_LDI"),
        (ldr(0, 1, 2), "OP_LDR"),
        (lea(0, 1), "OP_LEA"),
        (st(0, 1), "OP_ST"),
        (sti(0, 1), "OP_STI"),
        (str_(0, 1, 2), "OP_STR"),
        (trap(0x20), "OP_TRAP"),
    ])
    def test_keys(self, decoder, instr, key):
        result = decoder.decode(instr)
        assert result.valid is True
        assert result.key == key
        assert result.raw_instruction == instr

    def test_all_keys_are_registered(self, decoder):
        assert decoder.VALID_KEYS == get_registry().get_valid_keys()

    def test_add_params(self, decoder):
        assert decoder.decode(add_reg(1, 2, 3)).params == {"dest": 1, "src1": 2, "src2": 3}
        assert decoder.decode(add_imm(7, 0, -2)).params == {"dest": 7, "src1": 0, "imm": 0xFFFE}

    def test_memory_params(self, decoder):
        assert decoder.decode(ld(4, -1)).params == {"dest": 4, "offset": 0xFFFF}
        assert decoder.decode(st(5, 3)).params == {"src": 5, "offset": 3}
        assert decoder.decode(ldr(1, 6, -1)).params == {"dest": 1, "base": 6, "offset": 0xFFFF}
        assert decoder.decode(str_(2, 6, 1)).params == {"src": 2, "base": 6, "offset": 1}

    def test_branch_params(self, decoder):
        assert decoder.decode(br(0, 1, 1, -3)).params == {"cond": 0b011, "offset": 0xFFFD}

    def test_trap_vectors(self, decoder):
        for vector in range(0x20, 0x26):
            result = decoder.decode(trap(vector))
            assert result.key == "OP_TRAP"
            assert result.params == {"vector": vector}

    def test_trap_vectors_follow_dispatcher(self, decoder):
        """A vector decodes only if the dispatcher has a routine for it."""
        dispatcher = get_trap_dispatcher()
        for vector in range(0x100):
            assert decoder.decode(trap(vector)).valid == dispatcher.is_known(vector)

    @pytest.mark.parametrize("vector", [0x00, 0x1F, 0x26, 0xFF])
    def test_unknown_trap_vector_is_invalid(self, decoder, vector):
        result = decoder.decode(trap(vector))
        assert result.valid is False
        assert result.key == "OP_INVALID"
        assert "unknown trap vector" in result.error

    def test_rti_is_invalid(self, decoder):
        result = decoder.decode(0x8000)
        assert result.valid is False
        assert result.key == "OP_INVALID"
        assert "RTI" in result.error

    def test_reserved_opcode_is_invalid(self, decoder):
        result = decoder.decode(0xD123)
        assert result.valid is False
        assert result.params == {"raw": 0xD123}
        assert "RES" in result.error

    def test_zero_word_is_branch_never(self, decoder):
        """0x0000 is BR with no condition bits: a no-op."""
        result = decoder.decode(0x0000)
        assert result.key == "OP_BR"
        assert result.params == {"cond": 0, "offset": 0}
