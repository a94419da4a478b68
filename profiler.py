"""Loop profiler.

Loops are the only branching construct of the language, so counting loop
iterations measures every code path. The profiler is attached to a single
execution as its ``on_step`` callback and rebuilds, from the flat stream of
enter/leave events, which loop of the program tree is running.

Inside one iteration of a loop body every nested loop opcode is reached in
source order and emits exactly one enter/leave pair, even when it runs zero
times. The cursor therefore descends into the children of the current record
cyclically, and every event's explicit path is checked against it.
"""

from __future__ import annotations
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, TextIO, Tuple

from interpreter import EnterLoop, LeaveLoop, StepEvent
from lexer import BFError
from parser import Loop, Program


logger = logging.getLogger(__name__)


class ProfilerSyncError(BFError):
    """Raised when enter/leave events do not match the program's loop nesting."""


class Record:
    """Accumulated statistics for one loop, shaped like the program's loop nesting."""

    def __init__(self, program: Program) -> None:
        self.iterations = 0
        self.executed = 0
        # None -> this record is current; i -> the cursor is inside children[i]
        self.state: Optional[int] = None
        self.next_child = 0
        self.children: List[Record] = [Record(loop.body) for loop in program.loops()]

    def get(self) -> "Record":
        record = self
        while record.state is not None:
            record = record.children[record.state]
        return record

    def __repr__(self) -> str:
        return f"Record(iterations={self.iterations}, state={self.state}, children={self.children!r})"


@dataclass
class Count:
    iterations: int
    # opcodes of this body, not counting the contents of nested loops
    oc: int
    # instructions executed in this loop and all nested loops, all iterations
    oe_total: int
    children: List["Count"] = field(default_factory=list)

    @classmethod
    def build(cls, record: Record, program: Program, *, verify: bool = False) -> "Count":
        """Aggregate ``record`` over ``program``'s loop tree.

        With ``verify``, each loop's computed total is checked against the
        executed count its leave events reported.
        """
        children: List[Count] = []
        for child_record, loop in zip(record.children, program.loops()):
            child = cls.build(child_record, loop.body, verify=verify)
            if verify and child.oe_total != child_record.executed:
                raise ProfilerSyncError(
                    f"Loop reported {child_record.executed} instruction(s) executed, counted {child.oe_total}"
                )
            children.append(child)
        oc = sum(1 for opcode in program if not isinstance(opcode, Loop))
        oe_partial = sum(child.oe_total for child in children)
        return cls(
            iterations=record.iterations,
            oc=oc,
            oe_total=record.iterations * oc + oe_partial,
            children=children,
        )


class Profiler:
    def __init__(self, program: Program) -> None:
        self.program = program
        self.map = Record(program)
        self._frames: List[Record] = [self.map]
        self._path: List[int] = []
        logger.debug("Profiler: %d top-level loop(s)", len(self.map.children))

    @property
    def cursor(self) -> Tuple[int, ...]:
        return tuple(self._path)

    def on_step(self, step: StepEvent) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Profiler.on_step(%r) cursor=%r", step, self.cursor)
        if isinstance(step, EnterLoop):
            self._enter(step)
        elif isinstance(step, LeaveLoop):
            self._leave(step)
        else:
            raise ProfilerSyncError(f"Unknown step event {step!r}")

    def _enter(self, step: EnterLoop) -> None:
        record = self._frames[-1]
        if not record.children:
            raise ProfilerSyncError(f"Loop entered at {self.cursor}, which has no nested loop")
        index = record.next_child
        record.next_child = (index + 1) % len(record.children)
        record.state = index
        self._frames.append(record.children[index])
        self._path.append(index)
        self._check_path(step.path)

    def _leave(self, step: LeaveLoop) -> None:
        if len(self._frames) == 1:
            raise ProfilerSyncError("Loop left with no open loop frame")
        self._check_path(step.path)
        record = self._frames.pop()
        self._path.pop()
        if record.next_child != 0:
            raise ProfilerSyncError(
                f"Loop {step.path} left before nested loop {record.next_child} of its body was entered"
            )
        record.iterations += step.iterations
        record.executed += step.executed
        self._frames[-1].state = None

    def _check_path(self, path: Tuple[int, ...]) -> None:
        if path != self.cursor:
            raise ProfilerSyncError(f"Event for loop {path} arrived while the cursor is at {self.cursor}")

    def count(self) -> Count:
        # Loops still open after an aborted run have no leave totals yet.
        return Count.build(self.map, self.program, verify=len(self._frames) == 1)

    def render(self) -> str:
        count = self.count()
        total = count.oc + count.oe_total
        lines = [f"Instructions executed: {total}"]
        self._render_block(lines, 0, self.program, count, total)
        return "\n".join(lines) + "\n"

    def _render_block(self, lines: List[str], level: int, program: Program, count: Count, total: int) -> None:
        prefix = "  " * level
        children = iter(count.children)
        for opcode in program:
            if isinstance(opcode, Loop):
                child = next(children)
                percent = child.oe_total / total * 100.0 if total else 0.0
                lines.append(f"{prefix}Loop {child.iterations} iterations {child.oe_total} instr ({percent:.4f} % total)")
                self._render_block(lines, level + 1, opcode.body, child, total)
            else:
                lines.append(f"{prefix}{opcode}")

    def print_report(self, stream: Optional[TextIO] = None) -> None:
        out = stream if stream is not None else sys.stdout
        out.write(self.render())
        out.flush()
