"""Tests for the instruction primitives, one opcode at a time."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from lc3_vm import LC3CPU, ScriptedTerminal
from lc3_vm.registry import CPURegistry, get_registry
from lc3_vm.state import FL_NEG, FL_POS, FL_ZRO

from lc3_encoding import (
    add_imm, add_reg, and_imm, and_reg, br, jmp, jsr, jsrr, ld, ldi, ldr, lea,
    not_, ret, st, sti, str_,
)


@pytest.fixture
def cpu():
    return LC3CPU(terminal=ScriptedTerminal())


def place(cpu, *words, origin=0x3000):
    cpu.state.memory.load(origin, words)


def set_regs(cpu, **values):
    for name, value in values.items():
        cpu.state.registers.set(name, value)


class TestRegistry:
    """Test the frozen primitive table."""

    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_frozen(self):
        registry = CPURegistry()
        assert registry.is_frozen()
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register("OP_NEW", lambda state, params: None)

    def test_unknown_key(self, cpu):
        with pytest.raises(KeyError, match="Unknown operation key"):
            get_registry().execute(cpu.state, "OP_BOGUS", {})

    def test_execute_counts_cycles(self, cpu):
        get_registry().execute(cpu.state, "OP_NOT", {"dest": 0, "src": 0})
        assert cpu.state.cycle_count == 1


class TestOperate:
    """Test ADD, AND and NOT."""

    def test_add_reg(self, cpu):
        set_regs(cpu, R1=3, R2=4)
        place(cpu, add_reg(0, 1, 2))
        cpu.step()
        assert cpu.get_register("R0") == 7
        assert cpu.state.cond == FL_POS
        assert cpu.get_pc() == 0x3001

    def test_add_imm_negative(self, cpu):
        set_regs(cpu, R1=1)
        place(cpu, add_imm(1, 1, -1))
        cpu.step()
        assert cpu.get_register("R1") == 0
        assert cpu.state.cond == FL_ZRO

    def test_add_wraps(self, cpu):
        set_regs(cpu, R0=0x7FFF)
        place(cpu, add_imm(0, 0, 1))
        cpu.step()
        assert cpu.get_register("R0") == 0x8000
        assert cpu.state.cond == FL_NEG

    def test_add_overflow_past_16_bits(self, cpu):
        set_regs(cpu, R0=0xFFFF, R1=0x0002)
        place(cpu, add_reg(0, 0, 1))
        cpu.step()
        assert cpu.get_register("R0") == 0x0001

    @pytest.mark.parametrize("imm", [-16, -5, -1, 0, 1, 7, 15])
    def test_add_imm_matches_add_reg(self, imm):
        """ADD with imm5 behaves like ADD with a register holding sext(imm5)."""
        for base in (0x0000, 0x0001, 0x7FFF, 0x8000, 0xFFFF):
            imm_cpu = LC3CPU()
            set_regs(imm_cpu, R1=base)
            place(imm_cpu, add_imm(0, 1, imm))
            imm_cpu.step()

            reg_cpu = LC3CPU()
            set_regs(reg_cpu, R1=base, R2=imm & 0xFFFF)
            place(reg_cpu, add_reg(0, 1, 2))
            reg_cpu.step()

            assert imm_cpu.get_register("R0") == reg_cpu.get_register("R0")
            assert imm_cpu.state.cond == reg_cpu.state.cond

    @pytest.mark.parametrize("imm", [-16, -1, 0, 15])
    def test_and_imm_matches_and_reg(self, imm):
        for base in (0x0000, 0x00F0, 0xAAAA, 0xFFFF):
            imm_cpu = LC3CPU()
            set_regs(imm_cpu, R1=base)
            place(imm_cpu, and_imm(0, 1, imm))
            imm_cpu.step()

            reg_cpu = LC3CPU()
            set_regs(reg_cpu, R1=base, R2=imm & 0xFFFF)
            place(reg_cpu, and_reg(0, 1, 2))
            reg_cpu.step()

            assert imm_cpu.get_register("R0") == reg_cpu.get_register("R0")
            assert imm_cpu.state.cond == reg_cpu.state.cond

    def test_and_zero_clears(self, cpu):
        set_regs(cpu, R3=0x1234)
        place(cpu, and_imm(3, 3, 0))
        cpu.step()
        assert cpu.get_register("R3") == 0
        assert cpu.state.cond == FL_ZRO

    def test_not(self, cpu):
        set_regs(cpu, R2=0x00FF)
        place(cpu, not_(4, 2))
        cpu.step()
        assert cpu.get_register("R4") == 0xFF00
        assert cpu.state.cond == FL_NEG

    def test_not_of_all_ones(self, cpu):
        set_regs(cpu, R0=0xFFFF)
        place(cpu, not_(0, 0))
        cpu.step()
        assert cpu.get_register("R0") == 0
        assert cpu.state.cond == FL_ZRO


class TestDataMovement:
    """Test loads, stores and LEA."""

    def test_ld(self, cpu):
        place(cpu, ld(2, 1), 0, 0x8001)
        cpu.step()
        assert cpu.get_register("R2") == 0x8001
        assert cpu.state.cond == FL_NEG

    def test_ld_negative_offset(self, cpu):
        place(cpu, 0x0042, origin=0x2FFF)
        place(cpu, ld(0, -2))
        cpu.step()
        assert cpu.get_register("R0") == 0x0042

    def test_ldi_double_indirection(self, cpu):
        place(cpu, ldi(1, 0), 0x4000)
        place(cpu, 0x0009, origin=0x4000)
        cpu.step()
        assert cpu.get_register("R1") == 9
        assert cpu.state.cond == FL_POS

    def test_ldr(self, cpu):
        set_regs(cpu, R6=0x5000)
        place(cpu, 0x1111, origin=0x4FFF)
        place(cpu, ldr(0, 6, -1))
        cpu.step()
        assert cpu.get_register("R0") == 0x1111

    def test_ldr_address_wraps(self, cpu):
        set_regs(cpu, R6=0xFFFF)
        place(cpu, 0x2222, origin=0x0000)
        place(cpu, ldr(0, 6, 1))
        cpu.step()
        assert cpu.get_register("R0") == 0x2222

    def test_lea_sets_flags_from_address(self, cpu):
        place(cpu, lea(5, 4))
        cpu.step()
        assert cpu.get_register("R5") == 0x3005
        assert cpu.state.cond == FL_POS

    def test_lea_does_not_read_memory(self, cpu):
        place(cpu, lea(0, 0), 0xFFFF)
        cpu.step()
        assert cpu.get_register("R0") == 0x3001

    def test_st(self, cpu):
        set_regs(cpu, R3=0xABCD)
        place(cpu, st(3, 2))
        cpu.step()
        assert cpu.state.memory.peek(0x3003) == 0xABCD
        assert cpu.state.cond == FL_ZRO

    def test_sti(self, cpu):
        set_regs(cpu, R1=77)
        place(cpu, sti(1, 0), 0x4500)
        cpu.step()
        assert cpu.state.memory.peek(0x4500) == 77

    def test_str(self, cpu):
        set_regs(cpu, R1=5, R6=0x4000)
        place(cpu, str_(1, 6, 3))
        cpu.step()
        assert cpu.state.memory.peek(0x4003) == 5

    def test_stores_leave_flags_alone(self, cpu):
        set_regs(cpu, R0=0x8000, R6=0x4000)
        place(cpu, st(0, 5), sti(0, 5), str_(0, 6, 0))
        for _ in range(3):
            cpu.step()
        assert cpu.state.cond == FL_ZRO


class TestControlFlow:
    """Test BR, JMP/RET, JSR/JSRR."""

    @pytest.mark.parametrize("n,z,p,cond,taken", [
        (0, 0, 0, FL_ZRO, False),
        (1, 1, 1, FL_NEG, True),
        (1, 0, 0, FL_NEG, True),
        (1, 0, 0, FL_POS, False),
        (0, 1, 0, FL_ZRO, True),
        (0, 1, 0, FL_NEG, False),
        (0, 0, 1, FL_POS, True),
        (0, 1, 1, FL_NEG, False),
    ])
    def test_br(self, cpu, n, z, p, cond, taken):
        cpu.state.registers.set("COND", cond)
        place(cpu, br(n, z, p, 0x10))
        cpu.step()
        assert cpu.get_pc() == (0x3011 if taken else 0x3001)
        assert cpu.state.cond == cond

    def test_br_backwards(self, cpu):
        place(cpu, br(1, 1, 1, -1))
        cpu.step()
        assert cpu.get_pc() == 0x3000

    def test_jmp(self, cpu):
        set_regs(cpu, R2=0x4000)
        place(cpu, jmp(2))
        cpu.step()
        assert cpu.get_pc() == 0x4000

    def test_jsr_and_ret_round_trip(self, cpu):
        place(cpu, jsr(4), add_imm(0, 0, 1))
        place(cpu, add_imm(1, 1, 2), ret(), origin=0x3005)
        cpu.step()
        assert cpu.get_pc() == 0x3005
        assert cpu.get_register("R7") == 0x3001
        cpu.step()
        cpu.step()
        assert cpu.get_pc() == 0x3001
        cpu.step()
        assert cpu.get_register("R0") == 1
        assert cpu.get_register("R1") == 2

    def test_jsr_negative_offset(self, cpu):
        place(cpu, jsr(-0x400))
        cpu.step()
        assert cpu.get_pc() == (0x3001 - 0x400)

    def test_jsrr(self, cpu):
        set_regs(cpu, R3=0x5000)
        place(cpu, jsrr(3))
        cpu.step()
        assert cpu.get_pc() == 0x5000
        assert cpu.get_register("R7") == 0x3001

    def test_jsrr_through_r7(self, cpu):
        """JSRR R7 jumps to the old R7, then links."""
        set_regs(cpu, R7=0x6000)
        place(cpu, jsrr(7))
        cpu.step()
        assert cpu.get_pc() == 0x6000
        assert cpu.get_register("R7") == 0x3001

    def test_pc_wraps_at_top_of_memory(self, cpu):
        cpu.state.pc = 0xFFFF
        place(cpu, add_imm(0, 0, 1), origin=0xFFFF)
        cpu.step()
        assert cpu.get_pc() == 0x0000
