"""CPURegistry: LC-3 instruction primitives.

This module implements the registry pattern for CPU operations: each
decoded operation key maps to one primitive that applies the instruction's
effect to the machine state.

Registry Keys:
    OP_ADD_REG / OP_ADD_IMM: DR = SR1 + (SR2 | imm5)
    OP_AND_REG / OP_AND_IMM: DR = SR1 & (SR2 | imm5)
    OP_NOT: DR = ~SR
    OP_BR: Conditional PC-relative branch on n/z/p
    OP_JMP / OP_RET: PC = BaseR (RET is JMP R7)
    OP_JSR / OP_JSRR: R7 = PC, then PC-relative or register jump
    OP_LD / OP_LDI / OP_LDR / OP_LEA: Loads and effective address
    OP_ST / OP_STI / OP_STR: Stores
    OP_TRAP: R7 = PC, then run the trap routine
    OP_INVALID: Fatal decode condition, halts the machine

Primitives are functions (MachineState, params) -> None that mutate the
state in place. PC has already been incremented past the instruction when
a primitive runs, so PC-relative offsets are relative to the next
instruction. All address and value arithmetic wraps modulo 2^16.
"""

from typing import Any, Callable, Dict, Optional

from .state import MachineState, R_COND, R_PC, R_R7, WORD_MASK, update_flags
from .traps import get_trap_dispatcher


class CPURegistry:
    """Verified registry of CPU primitives.

    The registry is frozen after initialization to ensure
    no runtime modifications can occur.

    Attributes:
        _primitives: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        """Initialize registry with all CPU primitives."""
        self._primitives: Dict[str, Callable[[MachineState, Dict[str, Any]], None]] = {}
        self._frozen = False
        self._traps = get_trap_dispatcher()
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        """Register all CPU operation primitives."""
        # Operate
        self.register("OP_ADD_REG", self._op_add_reg)
        self.register("OP_ADD_IMM", self._op_add_imm)
        self.register("OP_AND_REG", self._op_and_reg)
        self.register("OP_AND_IMM", self._op_and_imm)
        self.register("OP_NOT", self._op_not)

        # Data movement
        self.register("OP_LD", self._op_ld)
        self.register("OP_LDI", self._op_ldi)
        self.register("OP_LDR", self._op_ldr)
        self.register("OP_LEA", self._op_lea)
        self.register("OP_ST", self._op_st)
        self.register("OP_STI", self._op_sti)
        self.register("OP_STR", self._op_str)

        # Control flow
        self.register("OP_BR", self._op_br)
        self.register("OP_JMP", self._op_jmp)
        self.register("OP_RET", self._op_jmp)
        self.register("OP_JSR", self._op_jsr)
        self.register("OP_JSRR", self._op_jsrr)
        self.register("OP_TRAP", self._op_trap)

        # Special
        self.register("OP_INVALID", self._op_invalid)

    def register(self, key: str, handler: Callable[[MachineState, Dict[str, Any]], None]) -> None:
        """Register a primitive operation.

        Args:
            key: Operation key (e.g., "OP_ADD_IMM")
            handler: Function that takes (state, params) and updates the state

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if registry is frozen."""
        return self._frozen

    def get_valid_keys(self) -> set:
        """Get set of all valid operation keys."""
        return set(self._primitives.keys())

    def execute(self, state: MachineState, key: str, params: Dict[str, Any]) -> None:
        """Execute a registered primitive.

        Args:
            state: Machine state, updated in place
            key: Operation key
            params: Operation parameters

        Raises:
            KeyError: If key not in registry
        """
        if key not in self._primitives:
            raise KeyError(f"Unknown operation key: {key}")

        self._primitives[key](state, params)

        # Always increment cycle count after execution
        state.cycle_count += 1

    # =========================================================================
    # Operate Primitives
    # =========================================================================

    def _op_add_reg(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ADD DR, SR1, SR2 - Add two registers, update flags."""
        regs = state.registers
        regs.write(params["dest"], regs.read(params["src1"]) + regs.read(params["src2"]))
        update_flags(regs, params["dest"])

    def _op_add_imm(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ADD DR, SR1, imm5 - Add sign-extended immediate, update flags."""
        regs = state.registers
        regs.write(params["dest"], regs.read(params["src1"]) + params["imm"])
        update_flags(regs, params["dest"])

    def _op_and_reg(self, state: MachineState, params: Dict[str, Any]) -> None:
        """AND DR, SR1, SR2 - Bitwise AND of two registers, update flags."""
        regs = state.registers
        regs.write(params["dest"], regs.read(params["src1"]) & regs.read(params["src2"]))
        update_flags(regs, params["dest"])

    def _op_and_imm(self, state: MachineState, params: Dict[str, Any]) -> None:
        """AND DR, SR1, imm5 - Bitwise AND with sign-extended immediate."""
        regs = state.registers
        regs.write(params["dest"], regs.read(params["src1"]) & params["imm"])
        update_flags(regs, params["dest"])

    def _op_not(self, state: MachineState, params: Dict[str, Any]) -> None:
        """NOT DR, SR - Bitwise complement, update flags."""
        regs = state.registers
        regs.write(params["dest"], ~regs.read(params["src"]))
        update_flags(regs, params["dest"])

    # =========================================================================
    # Data Movement Primitives
    # =========================================================================

    def _op_ld(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD DR, PCoffset9 - DR = M[PC + offset]."""
        regs = state.registers
        regs.write(params["dest"], state.memory.read(self._pc_relative(state, params)))
        update_flags(regs, params["dest"])

    def _op_ldi(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LDI DR, PCoffset9 - DR = M[M[PC + offset]]."""
        regs = state.registers
        pointer = state.memory.read(self._pc_relative(state, params))
        regs.write(params["dest"], state.memory.read(pointer))
        update_flags(regs, params["dest"])

    def _op_ldr(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LDR DR, BaseR, offset6 - DR = M[BaseR + offset]."""
        regs = state.registers
        regs.write(params["dest"], state.memory.read(self._base_relative(state, params)))
        update_flags(regs, params["dest"])

    def _op_lea(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LEA DR, PCoffset9 - DR = PC + offset, flags set from the address."""
        regs = state.registers
        regs.write(params["dest"], self._pc_relative(state, params))
        update_flags(regs, params["dest"])

    def _op_st(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ST SR, PCoffset9 - M[PC + offset] = SR."""
        state.memory.write(self._pc_relative(state, params),
                           state.registers.read(params["src"]))

    def _op_sti(self, state: MachineState, params: Dict[str, Any]) -> None:
        """STI SR, PCoffset9 - M[M[PC + offset]] = SR."""
        pointer = state.memory.read(self._pc_relative(state, params))
        state.memory.write(pointer, state.registers.read(params["src"]))

    def _op_str(self, state: MachineState, params: Dict[str, Any]) -> None:
        """STR SR, BaseR, offset6 - M[BaseR + offset] = SR."""
        state.memory.write(self._base_relative(state, params),
                           state.registers.read(params["src"]))

    # =========================================================================
    # Control Flow Primitives
    # =========================================================================

    def _op_br(self, state: MachineState, params: Dict[str, Any]) -> None:
        """BRnzp PCoffset9 - Branch if any requested flag is set in COND."""
        if params["cond"] & state.registers.read(R_COND):
            state.registers.write(R_PC, self._pc_relative(state, params))

    def _op_jmp(self, state: MachineState, params: Dict[str, Any]) -> None:
        """JMP BaseR / RET - PC = BaseR."""
        state.registers.write(R_PC, state.registers.read(params["base"]))

    def _op_jsr(self, state: MachineState, params: Dict[str, Any]) -> None:
        """JSR PCoffset11 - R7 = PC, PC = PC + offset."""
        regs = state.registers
        pc = regs.read(R_PC)
        regs.write(R_R7, pc)
        regs.write(R_PC, pc + params["offset"])

    def _op_jsrr(self, state: MachineState, params: Dict[str, Any]) -> None:
        """JSRR BaseR - R7 = PC, PC = BaseR.

        The base is read before R7 is written, so JSRR R7 jumps to the
        old R7.
        """
        regs = state.registers
        target = regs.read(params["base"])
        regs.write(R_R7, regs.read(R_PC))
        regs.write(R_PC, target)

    def _op_trap(self, state: MachineState, params: Dict[str, Any]) -> None:
        """TRAP trapvect8 - R7 = PC, then run the built-in routine."""
        state.registers.write(R_R7, state.registers.read(R_PC))
        self._traps.dispatch(state, params["vector"])

    # =========================================================================
    # Special Primitives
    # =========================================================================

    def _op_invalid(self, state: MachineState, params: Dict[str, Any]) -> None:
        """INVALID - Fatal decode condition; halt without touching registers."""
        state.halted = True

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _pc_relative(state: MachineState, params: Dict[str, Any]) -> int:
        return (state.registers.read(R_PC) + params["offset"]) & WORD_MASK

    @staticmethod
    def _base_relative(state: MachineState, params: Dict[str, Any]) -> int:
        return (state.registers.read(params["base"]) + params["offset"]) & WORD_MASK


# Singleton registry instance
_registry: Optional[CPURegistry] = None


def get_registry() -> CPURegistry:
    """Get the singleton CPU registry instance.

    Returns:
        The frozen CPURegistry instance
    """
    global _registry
    if _registry is None:
        _registry = CPURegistry()
    return _registry
