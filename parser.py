from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from lexer import Lexer, Token


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False, kw_only=True)


# Cells hold one unsigned byte.
CELL_MODULUS = 256


class Opcode(Node):
    def __str__(self) -> str:
        return self.__class__.__name__


@dataclass
class Increment(Opcode):
    amount: int = 1

    def __str__(self) -> str:
        return f"Increment({self.amount})"


@dataclass
class Decrement(Opcode):
    amount: int = 1

    def __str__(self) -> str:
        return f"Decrement({self.amount})"


@dataclass
class MoveLeft(Opcode):
    amount: int = 1

    def __str__(self) -> str:
        return f"MoveLeft({self.amount})"


@dataclass
class MoveRight(Opcode):
    amount: int = 1

    def __str__(self) -> str:
        return f"MoveRight({self.amount})"


@dataclass
class ReadByte(Opcode):
    pass


@dataclass
class WriteByte(Opcode):
    pass


@dataclass
class Loop(Opcode):
    body: "Program" = field(default_factory=lambda: Program())


@dataclass
class Program:
    opcodes: List[Opcode] = field(default_factory=list)

    def size(self) -> int:
        """Count leaf opcodes, descending into every loop body once."""
        total = 0
        pending = [self]
        while pending:
            program = pending.pop()
            for opcode in program.opcodes:
                if isinstance(opcode, Loop):
                    pending.append(opcode.body)
                else:
                    total += 1
        return total

    def loops(self) -> Iterator[Loop]:
        for opcode in self.opcodes:
            if isinstance(opcode, Loop):
                yield opcode

    def __iter__(self) -> Iterator[Opcode]:
        return iter(self.opcodes)

    def __len__(self) -> int:
        return len(self.opcodes)


LEAVES = {
    "PLUS": Increment,
    "MINUS": Decrement,
    "LEFT": MoveLeft,
    "RIGHT": MoveRight,
    "COMMA": ReadByte,
    "DOT": WriteByte,
}


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> Program:
        # Brackets are never rejected: a missing ']' closes at end of input,
        # a stray top-level ']' ends the program.
        program = Program()
        scopes: List[Program] = [program]
        while True:
            token = self._advance()
            if token.type == "EOF":
                break
            if token.type == "RBRACKET":
                scopes.pop()
                if not scopes:
                    break
                continue
            location = self._location_from_token(token)
            if token.type == "LBRACKET":
                loop = Loop(location=location)
                scopes[-1].opcodes.append(loop)
                scopes.append(loop.body)
                continue
            scopes[-1].opcodes.append(LEAVES[token.type](location=location))
        return program

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != "EOF":
            self.index += 1
        return token

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse_source(text: str, filename: str = "<string>") -> Program:
    tokens = Lexer(text, filename).tokenize()
    return Parser(tokens, filename, text.splitlines()).parse()
