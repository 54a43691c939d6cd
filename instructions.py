from __future__ import annotations
from dataclasses import dataclass


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Instruction:
    location: SourceLocation

    @property
    def text(self) -> str:
        return self.location.statement


@dataclass
class SaveNumber(Instruction):
    var: str
    number: float


@dataclass
class SaveStr(Instruction):
    var: str
    text_value: str


@dataclass
class Copy(Instruction):
    source: str
    target: str


@dataclass
class PrintVar(Instruction):
    var: str


@dataclass
class PrintStr(Instruction):
    text_value: str


@dataclass
class Append(Instruction):
    target: str
    source: str


@dataclass
class MathOp(Instruction):
    op: str
    target: str
    a: str
    b: str


@dataclass
class BoolOp(Instruction):
    op: str
    target: str
    a: str
    b: str


@dataclass
class Loop(Instruction):
    var: str
    body: Instruction


@dataclass
class IfStatement(Instruction):
    var: str
    body: Instruction


@dataclass
class UnlessStatement(Instruction):
    var: str
    body: Instruction


@dataclass
class WhileLoop(Instruction):
    var: str
    body: Instruction


@dataclass
class ResetVar(Instruction):
    var: str


@dataclass
class ResetAll(Instruction):
    pass


@dataclass
class GetInput(Instruction):
    op: str
    var: str
    index: float


@dataclass
class Negate(Instruction):
    var: str


@dataclass
class Finish(Instruction):
    pass


@dataclass
class Execute(Instruction):
    var: str
    argmap: str


@dataclass
class ErrorInstruction(Instruction):
    """Text that matched no instruction pattern, or matched one with bad arguments."""

    reason: str


MATH_OPS = "ASMDREGL"
BOOL_OPS = "EAOX"
INPUT_OPS = "NS"
