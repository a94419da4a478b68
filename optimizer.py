"""Peephole reduction of parsed programs.

A single left-to-right fold keeps one accumulator opcode. Each following
opcode either fuses into the accumulator or flushes it:

    Before: Increment(1), Increment(1), Increment(1), Decrement(1), MoveRight(1), MoveRight(1)
    After:  Increment(2), MoveRight(2)

Only neighbours are ever compared, so a pass does not reach a global normal
form. Cell arithmetic fuses modulo 256, matching execution-time wraparound;
pointer movement fuses without wrapping.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Tuple, Type

from parser import CELL_MODULUS, Decrement, Increment, Loop, MoveLeft, MoveRight, Opcode, Program


logger = logging.getLogger(__name__)

# (positive kind, negative kind, modulus or None)
FAMILIES: Tuple[Tuple[Type[Opcode], Type[Opcode], Optional[int]], ...] = (
    (Increment, Decrement, CELL_MODULUS),
    (MoveRight, MoveLeft, None),
)


def _fuse(current: Opcode, opcode: Opcode) -> Optional[Opcode]:
    for positive, negative, modulus in FAMILIES:
        kinds = (positive, negative)
        if not (isinstance(current, kinds) and isinstance(opcode, kinds)):
            continue
        net = _signed(current, positive) + _signed(opcode, positive)
        # The accumulator keeps its kind unless the net amount changes sign.
        if net > 0 or (net == 0 and isinstance(current, positive)):
            kind, amount = positive, net
        else:
            kind, amount = negative, -net
        if modulus is not None:
            amount %= modulus
        return kind(amount, location=current.location)
    return None


def _signed(opcode: Opcode, positive: Type[Opcode]) -> int:
    amount: int = opcode.amount  # type: ignore[attr-defined]
    return amount if isinstance(opcode, positive) else -amount


def reduce(program: Program) -> None:
    """Fuse adjacent arithmetic and movement opcodes of ``program`` in place."""
    reduced: List[Opcode] = []
    current: Optional[Opcode] = None
    for opcode in program.opcodes:
        if isinstance(opcode, Loop):
            reduce(opcode.body)
        if current is not None:
            fused = _fuse(current, opcode)
            if fused is not None:
                current = fused
                continue
            reduced.append(current)
        current = opcode
    if current is not None:
        reduced.append(current)
    program.opcodes[:] = reduced


def optimize(program: Program, passes: int = 1) -> Program:
    if passes < 1:
        raise ValueError(f"optimizer passes must be >= 1, got {passes}")
    verbose = logger.isEnabledFor(logging.DEBUG)
    before = program.size() if verbose else 0
    for _ in range(passes):
        reduce(program)
    if verbose:
        logger.debug("optimize: %d pass(es), size %d -> %d", passes, before, program.size())
    return program
