from __future__ import annotations
import re
from typing import Iterator, List, Optional

from instructions import (
    BOOL_OPS,
    INPUT_OPS,
    MATH_OPS,
    Append,
    BoolOp,
    Copy,
    ErrorInstruction,
    Execute,
    Finish,
    GetInput,
    IfStatement,
    Instruction,
    Loop,
    MathOp,
    Negate,
    PrintStr,
    PrintVar,
    ResetAll,
    ResetVar,
    SaveNumber,
    SaveStr,
    SourceLocation,
    UnlessStatement,
    WhileLoop,
)


class LetterboxError(Exception):
    """Base class for interpreter errors."""


class LetterboxParseError(LetterboxError):
    """Raised when program text cannot be obtained or read."""


class LetterboxRuntimeError(LetterboxError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rewrite_rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.step_index: Optional[int] = None


WHITESPACE = " \t\n\r\f"

SAVE_NUMBER = re.compile(r"S([a-z])(-?[0-9]+(?:\.[0-9]+)?)")
SAVE_STR = re.compile(r"S([a-z])'([^']*)'")
COPY = re.compile(r"C([a-z])([a-z])")
PRINT_VAR = re.compile(r"P([a-z])")
PRINT_STR = re.compile(r"P'([^']*)'")
APPEND = re.compile(r"A([a-z])([a-z])")
OPERATION = re.compile(r"[MB]([A-Z])([a-z])([a-z])([a-z])")
NESTED = re.compile(r"[LIUW]([a-z])")
RESET_ALL = re.compile(r"RA")
RESET_VAR = re.compile(r"R([a-z])")
GET_INPUT = re.compile(r"G([A-Z])([a-z])([0-9]+(?:\.[0-9]+)?)")
NEGATE = re.compile(r"N([a-z])")
EXECUTE = re.compile(r"X([a-z])([a-z]*)")

OPCODES = "SCPAMBLIUWRGNFX"

MAX_NESTING_DEPTH = 256
NESTED_PREFIX = "Invalid nested instruction: "
NESTING_TOO_DEEP = "Instruction nesting too deep"

NESTED_KINDS = {
    "L": Loop,
    "I": IfStatement,
    "U": UnlessStatement,
    "W": WhileLoop,
}


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1
        self.nesting = 0

    def tokenize(self) -> List[Instruction]:
        return list(self.tokens())

    def tokens(self) -> Iterator[Instruction]:
        """Yield instructions in source order, skipping whitespace and comments."""
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if ch in WHITESPACE:
                _advance()
                continue
            if ch == "!":
                self._consume_comment()
                continue
            instruction = self._next_instruction()
            # only None at whitespace, comments or end of text, all handled above
            assert instruction is not None
            yield instruction

    def _next_instruction(self) -> Optional[Instruction]:
        if self._eof:
            return None
        ch = self._peek()
        if ch in WHITESPACE or ch == "!":
            return None

        if ch == "S":
            match = self._match(SAVE_NUMBER)
            if match:
                location = self._take(match.end() - match.start())
                return SaveNumber(location, match.group(1), float(match.group(2)))
            match = self._match(SAVE_STR)
            if match:
                location = self._take(match.end() - match.start())
                return SaveStr(location, match.group(1), match.group(2))
        elif ch == "C":
            match = self._match(COPY)
            if match:
                return Copy(self._take(3), match.group(1), match.group(2))
        elif ch == "P":
            match = self._match(PRINT_STR)
            if match:
                location = self._take(match.end() - match.start())
                return PrintStr(location, match.group(1))
            match = self._match(PRINT_VAR)
            if match:
                return PrintVar(self._take(2), match.group(1))
        elif ch == "A":
            match = self._match(APPEND)
            if match:
                return Append(self._take(3), match.group(1), match.group(2))
        elif ch in "MB":
            match = self._match(OPERATION)
            if match:
                return self._consume_operation(ch, match)
        elif ch in NESTED_KINDS:
            match = self._match(NESTED)
            if match:
                return self._consume_nested(ch, match.group(1))
        elif ch == "R":
            if self._match(RESET_ALL):
                return ResetAll(self._take(2))
            match = self._match(RESET_VAR)
            if match:
                return ResetVar(self._take(2), match.group(1))
        elif ch == "G":
            match = self._match(GET_INPUT)
            if match:
                location = self._take(match.end() - match.start())
                if match.group(1) not in INPUT_OPS:
                    return ErrorInstruction(location, f"Invalid input op '{match.group(1)}'")
                return GetInput(location, match.group(1), match.group(2), float(match.group(3)))
        elif ch == "N":
            match = self._match(NEGATE)
            if match:
                return Negate(self._take(2), match.group(1))
        elif ch == "F":
            return Finish(self._take(1))
        elif ch == "X":
            match = self._match(EXECUTE)
            if match:
                location = self._take(match.end() - match.start())
                argmap = match.group(2)
                if len(argmap) % 2 != 0:
                    return ErrorInstruction(
                        location,
                        f"Execute parameters must come in pairs, got '{argmap}'",
                    )
                return Execute(location, match.group(1), argmap)

        if ch in OPCODES:
            return ErrorInstruction(self._take(1), f"Malformed '{ch}' instruction")
        return ErrorInstruction(self._take(1), f"Unrecognized character '{ch}'")

    def _consume_operation(self, kind: str, match: "re.Match[str]") -> Instruction:
        location = self._take(5)
        op, target, a, b = match.groups()
        if kind == "M":
            if op not in MATH_OPS:
                return ErrorInstruction(location, f"Invalid math op '{op}'")
            return MathOp(location, op, target, a, b)
        if op not in BOOL_OPS:
            return ErrorInstruction(location, f"Invalid bool op '{op}'")
        return BoolOp(location, op, target, a, b)

    def _consume_nested(self, kind: str, var: str) -> Instruction:
        start, line, col = self.index, self.line, self.column
        self._advance()
        self._advance()
        if self.nesting >= MAX_NESTING_DEPTH:
            location = SourceLocation(self.filename, line, col, self.text[start:self.index])
            return ErrorInstruction(location, f"{NESTING_TOO_DEEP} (limit {MAX_NESTING_DEPTH})")
        # The body is tokenized from the suffix directly after the variable.
        self.nesting += 1
        try:
            body = self._next_instruction()
        finally:
            self.nesting -= 1
        location = SourceLocation(self.filename, line, col, self.text[start:self.index])
        if body is None:
            return ErrorInstruction(location, f"Missing instruction after '{location.statement}'")
        if isinstance(body, ErrorInstruction):
            reason = body.reason
            if not reason.startswith(NESTED_PREFIX):
                reason = NESTED_PREFIX + reason
            return ErrorInstruction(location, reason)
        return NESTED_KINDS[kind](location, var, body)

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _match(self, pattern: "re.Pattern[str]") -> Optional["re.Match[str]"]:
        return pattern.match(self.text, self.index)

    def _take(self, length: int) -> SourceLocation:
        location = SourceLocation(
            self.filename,
            self.line,
            self.column,
            self.text[self.index:self.index + length],
        )
        for _ in range(length):
            self._advance()
        return location

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
