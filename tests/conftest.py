"""Shared fixtures for the interpreter tests."""

from typing import Callable, Iterable, List, Optional

import pytest

from interpreter import Interpreter


class Harness:
    """An interpreter wired to an in-memory byte source and sink."""

    def __init__(self, data: Iterable[int] = ()) -> None:
        self.output: List[int] = []
        self._input = list(data)
        self.interpreter = Interpreter(
            input_provider=self._read,
            output_sink=self.output.append,
        )

    def _read(self) -> Optional[int]:
        return self._input.pop(0) if self._input else None

    def run(self, source, on_step=None) -> List[int]:
        self.interpreter.exec(source, on_step)
        return self.output


@pytest.fixture
def harness() -> Callable[..., Harness]:
    def make(data: Iterable[int] = ()) -> Harness:
        return Harness(data)

    return make
