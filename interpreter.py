from __future__ import annotations
import json
import logging
import sys
import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple, Union
from numpy.typing import NDArray

from lexer import BFError
from parser import (
    CELL_MODULUS,
    Decrement,
    Increment,
    Loop,
    MoveLeft,
    MoveRight,
    Program,
    ReadByte,
    SourceLocation,
    WriteByte,
    parse_source,
)


logger = logging.getLogger(__name__)

INITIAL_TAPE_CAPACITY = 64

LoopPath = Tuple[int, ...]


@dataclass(frozen=True)
class EnterLoop:
    """Emitted once before a loop's iterations are considered."""

    path: LoopPath


@dataclass(frozen=True)
class LeaveLoop:
    """Emitted once after a loop finishes.

    ``executed`` counts every opcode run during all iterations, nested loops
    included; ``iterations`` is how many times the body ran.
    """

    path: LoopPath
    executed: int
    iterations: int


StepEvent = Union[EnterLoop, LeaveLoop]
StepCallback = Callable[[StepEvent], None]
InputProvider = Callable[[], Optional[int]]
OutputSink = Callable[[int], None]


class BFRuntimeError(BFError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class PointerUnderflowError(BFRuntimeError):
    """Raised when the pointer would move left of the first cell."""


class BFResourceError(BFRuntimeError):
    """Raised when the host runs out of memory or stack."""

    @classmethod
    def from_exhaustion(
        cls,
        exc: BaseException,
        *,
        location: Optional[SourceLocation] = None,
    ) -> "BFResourceError":
        error = cls(f"Resource exhausted: {exc.__class__.__name__}", location=location, rule="resource")
        error.__cause__ = exc
        return error


class ByteInput:
    """Input provider pulling one byte at a time from a text stream.

    Characters outside ASCII are split into their UTF-8 bytes. End of the
    stream yields ``None``, which the interpreter stores as zero.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream
        self._pending = bytearray()

    def __call__(self) -> Optional[int]:
        if not self._pending:
            stream = self.stream if self.stream is not None else sys.stdin
            text = stream.read(1)
            if not text:
                return None
            self._pending.extend(text.encode("utf-8"))
        return self._pending.pop(0)


class ByteOutput:
    """Output sink writing each byte as one character."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream

    def __call__(self, value: int) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        stream.write(chr(value))
        stream.flush()


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        input_provider: Optional[InputProvider] = None,
        output_sink: Optional[OutputSink] = None,
    ) -> None:
        self.filename = filename
        self.input_provider = input_provider or ByteInput()
        self.output_sink = output_sink or ByteOutput()
        self.reset()

    def reset(self) -> None:
        self._cells: NDArray[np.uint8] = np.zeros(INITIAL_TAPE_CAPACITY, dtype=np.uint8)
        self._length = 1
        self.pointer = 0
        self.counter = 0
        # Loops currently being iterated, outermost first.
        self.loop_stack: List[Tuple[LoopPath, Loop]] = []

    @property
    def tape(self) -> NDArray[np.uint8]:
        return self._cells[: self._length]

    def exec(self, source: Union[str, Program], on_step: Optional[StepCallback] = None) -> None:
        program = parse_source(source, self.filename) if isinstance(source, str) else source
        self.execute(program, on_step)

    def execute(self, program: Program, on_step: Optional[StepCallback] = None) -> None:
        self.loop_stack = []
        try:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("execute: program size %d", program.size())
            self._execute_block(program, (), on_step)
        except BFRuntimeError as error:
            if error.step_index is None:
                error.step_index = self.counter
            raise
        except (MemoryError, RecursionError) as exc:
            location = self.loop_stack[-1][1].location if self.loop_stack else None
            wrapped = BFResourceError.from_exhaustion(exc, location=location)
            wrapped.step_index = self.counter
            raise wrapped from exc

    def _execute_block(self, program: Program, path: LoopPath, on_step: Optional[StepCallback]) -> None:
        loop_index = 0
        for opcode in program.opcodes:
            if isinstance(opcode, Loop):
                self._execute_loop(opcode, path + (loop_index,), on_step)
                loop_index += 1
                continue
            self.counter += 1
            pointer = self.pointer
            if isinstance(opcode, Increment):
                self._cells[pointer] = (int(self._cells[pointer]) + opcode.amount) % CELL_MODULUS
            elif isinstance(opcode, Decrement):
                self._cells[pointer] = (int(self._cells[pointer]) - opcode.amount) % CELL_MODULUS
            elif isinstance(opcode, MoveLeft):
                if opcode.amount > pointer:
                    raise PointerUnderflowError(
                        f"Pointer moved left of the first cell (pointer {pointer}, move {opcode.amount})",
                        location=opcode.location,
                        rule="MoveLeft",
                    )
                self.pointer = pointer - opcode.amount
            elif isinstance(opcode, MoveRight):
                self.pointer = pointer + opcode.amount
                self._ensure_cell(self.pointer)
            elif isinstance(opcode, ReadByte):
                value = self.input_provider()
                self._cells[pointer] = 0 if value is None else value % CELL_MODULUS
            elif isinstance(opcode, WriteByte):
                self.output_sink(int(self._cells[pointer]))

    def _execute_loop(self, loop: Loop, path: LoopPath, on_step: Optional[StepCallback]) -> None:
        if on_step is not None:
            on_step(EnterLoop(path))
        self.loop_stack.append((path, loop))
        start = self.counter
        iterations = 0
        while self._cells[self.pointer] != 0:
            self._execute_block(loop.body, path, on_step)
            iterations += 1
        self.loop_stack.pop()
        if on_step is not None:
            on_step(LeaveLoop(path, self.counter - start, iterations))

    def _ensure_cell(self, index: int) -> None:
        if index >= len(self._cells):
            grown = np.zeros(max(len(self._cells) * 2, index + 1), dtype=np.uint8)
            grown[: self._length] = self._cells[: self._length]
            self._cells = grown
        if index >= self._length:
            self._length = index + 1

    def __repr__(self) -> str:
        return f"Interpreter(tape={self.tape.tolist()}, pointer={self.pointer}, counter={self.counter})"


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: BFRuntimeError) -> List[TracebackFrame]:
        # Each frame points at the site it is currently executing: the next
        # nested loop, or the failing opcode for the innermost frame.
        stack = self.interpreter.loop_stack
        names = ["<top-level>"] + ["loop " + ".".join(str(i) for i in path) for path, _ in stack]
        sites = [loop.location for _, loop in stack] + [error.location]
        return [TracebackFrame(name=name, location=site) for name, site in zip(names, sites)]

    def format_text(self, error: BFRuntimeError) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            if frame.location:
                lines.append(
                    f"  File \"{frame.location.file}\", line {frame.location.line}, column {frame.location.column}, in {frame.name}"
                )
                if frame.location.statement:
                    lines.append(f"    {frame.location.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
        if error.step_index is not None:
            lines.append(f"  Instructions executed: {error.step_index}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (opcode: {rule})")
        return "\n".join(lines)

    def to_json(self, error: BFRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "opcode": error.rule,
                "failing_step_index": error.step_index,
            },
            "state": {
                "pointer": self.interpreter.pointer,
                "tape_length": len(self.interpreter.tape),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
