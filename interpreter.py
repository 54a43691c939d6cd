from __future__ import annotations
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from instructions import (
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
from lexer import LetterboxError, LetterboxParseError, LetterboxRuntimeError, Lexer
from storage import TYPE_NUM, TYPE_TEXT, Storage, Value, is_var


DEFAULT_LOOP_LIMIT = 100_000
MAX_EXECUTE_DEPTH = 64

QUOTED = re.compile(r"'[^']*'")
PLACEHOLDER = "\x00"

NUMBER_INPUT = re.compile(
    r"[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)",
    re.IGNORECASE,
)


def substitute_parameters(text: str, argmap: str) -> str:
    """Rewrite parameter letters in stored program text.

    ``argmap`` is read two letters at a time as (parameter, argument). All
    parameters are replaced at once, so ``abba`` swaps ``a`` and ``b``.
    Single-quoted literals are masked before the rewrite and restored
    afterwards in the order they appeared.
    """
    for ch in argmap:
        if not is_var(ch):
            raise LetterboxRuntimeError(f"Invalid parameter letter '{ch}'", rewrite_rule="Execute")
    if len(argmap) % 2 != 0:
        raise LetterboxRuntimeError(
            f"Parameters must come in pairs, got '{argmap}'", rewrite_rule="Execute"
        )
    if PLACEHOLDER in text:
        raise LetterboxRuntimeError("Program text contains a NUL character", rewrite_rule="Execute")

    table: Dict[int, str] = {}
    for i in range(0, len(argmap), 2):
        table[ord(argmap[i])] = argmap[i + 1]

    literals = QUOTED.findall(text)
    masked = QUOTED.sub(PLACEHOLDER, text)
    parts = masked.translate(table).split(PLACEHOLDER)
    restored: List[str] = [parts[0]]
    for literal, part in zip(literals, parts[1:]):
        restored.append(literal)
        restored.append(part)
    return "".join(restored)


def parse_number(text: str) -> float:
    if not NUMBER_INPUT.fullmatch(text):
        raise LetterboxRuntimeError(f"Input '{text}' is not a number", rewrite_rule="GetInput")
    return float(text)


def describe_call(instruction: Execute) -> str:
    """``Xfaebg`` -> ``Xf(a=e, b=g)``; a call without parameters keeps its text."""
    argmap = instruction.argmap
    if not argmap:
        return f"X{instruction.var}"
    pairs = ", ".join(f"{argmap[i]}={argmap[i + 1]}" for i in range(0, len(argmap) - 1, 2))
    return f"X{instruction.var}({pairs})"


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]
    depth: int = 0


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}
        self.frame_counter = 0

    def new_frame(self, name: str, call_location: Optional[SourceLocation], depth: int = 0) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location, depth=depth)

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)


class Evaluator:
    """Runs a Letterbox instruction sequence against a variable store.

    ``program`` is either source text or an iterable of instructions. The
    store, input vector and output buffer are borrowed: programs started by
    an Execute instruction share all three with the caller.
    """

    def __init__(
        self,
        program: Union[str, Iterable[Instruction]],
        storage: Storage,
        inputs: Sequence[str],
        output: List[str],
        loop_limit: int = DEFAULT_LOOP_LIMIT,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        depth: int = 0,
        logger: Optional[StateLogger] = None,
        call_stack: Optional[List[Frame]] = None,
        frame_name: str = "<top-level>",
        call_location: Optional[SourceLocation] = None,
    ) -> None:
        if loop_limit < 0:
            raise LetterboxRuntimeError(f"Loop limit must be non-negative, got {loop_limit}")
        if isinstance(program, str):
            program = Lexer(program, filename).tokens()
        self.instructions: List[Instruction] = list(program)
        self.storage = storage
        self.inputs = inputs
        self.output = output
        self.loop_limit = loop_limit
        self.filename = filename
        self.verbose = verbose
        self.depth = depth
        self.cursor = 0
        self.finished = not self.instructions
        self.result: Optional[LetterboxRuntimeError] = None
        self.logger = logger if logger is not None else StateLogger(verbose=verbose)
        self.call_stack: List[Frame] = call_stack if call_stack is not None else []
        self.frame = self.logger.new_frame(frame_name, call_location, depth)

    def run(self) -> None:
        """Run until finished. Errors are stored in ``result`` and re-raised."""
        self.call_stack.append(self.frame)
        while not self.finished:
            self.step()
        self.call_stack.pop()

    def step(self) -> None:
        if self.finished:
            raise LetterboxRuntimeError("Program is already finished.", rewrite_rule="step")
        instruction = self.instructions[self.cursor]
        self.cursor += 1
        try:
            self.evaluate(instruction)
        except LetterboxRuntimeError as error:
            self._fail(error)
            raise
        except RecursionError:
            error = LetterboxRuntimeError(
                "Instruction nesting too deep for the host stack",
                location=instruction.location,
                rewrite_rule=instruction.__class__.__name__,
            )
            self._fail(error)
            raise error from None
        if self.cursor >= len(self.instructions):
            self.finished = True

    def _fail(self, error: LetterboxRuntimeError) -> None:
        self.finished = True
        self.result = error
        if error.step_index is None and self.logger.entries:
            error.step_index = self.logger.entries[-1].step_index

    def evaluate(self, instruction: Instruction) -> None:
        self._log_step(rule=instruction.__class__.__name__, location=instruction.location)
        try:
            self._dispatch(instruction)
        except LetterboxRuntimeError as error:
            if error.location is None:
                error.location = instruction.location
            if error.rewrite_rule is None or error.rewrite_rule == "VAR":
                error.rewrite_rule = instruction.__class__.__name__
            raise

    def _dispatch(self, instruction: Instruction) -> None:
        storage = self.storage
        if isinstance(instruction, SaveNumber):
            storage.set(instruction.var, Value.number(instruction.number))
            return
        if isinstance(instruction, SaveStr):
            storage.set(instruction.var, Value.text(instruction.text_value))
            return
        if isinstance(instruction, Copy):
            storage.copy(instruction.source, instruction.target)
            return
        if isinstance(instruction, PrintVar):
            self.output.append(str(storage.get(instruction.var)))
            return
        if isinstance(instruction, PrintStr):
            self.output.append(instruction.text_value)
            return
        if isinstance(instruction, Append):
            joined = str(storage.get(instruction.target)) + str(storage.get(instruction.source))
            storage.set(instruction.target, Value.text(joined))
            return
        if isinstance(instruction, MathOp):
            self._execute_math(instruction)
            return
        if isinstance(instruction, BoolOp):
            self._execute_bool(instruction)
            return
        if isinstance(instruction, Loop):
            self._execute_loop(instruction)
            return
        if isinstance(instruction, IfStatement):
            if storage.as_bool(instruction.var):
                self.evaluate(instruction.body)
            return
        if isinstance(instruction, UnlessStatement):
            if not storage.as_bool(instruction.var):
                self.evaluate(instruction.body)
            return
        if isinstance(instruction, WhileLoop):
            self._execute_while(instruction)
            return
        if isinstance(instruction, ResetVar):
            storage.reset(instruction.var)
            return
        if isinstance(instruction, ResetAll):
            storage.reset_all()
            return
        if isinstance(instruction, GetInput):
            self._execute_input(instruction)
            return
        if isinstance(instruction, Negate):
            flipped = 0.0 if storage.as_bool(instruction.var) else 1.0
            storage.set(instruction.var, Value.number(flipped))
            return
        if isinstance(instruction, Finish):
            self.finished = True
            return
        if isinstance(instruction, Execute):
            self._execute_program(instruction)
            return
        if isinstance(instruction, ErrorInstruction):
            raise LetterboxRuntimeError(
                f"Unrecognized instruction '{instruction.text}': {instruction.reason}",
                location=instruction.location,
                rewrite_rule="ErrorInstruction",
            )
        raise LetterboxRuntimeError(
            f"Unrecognized instruction {instruction.__class__.__name__}",
            location=instruction.location,
        )

    def _expect_number(self, name: str) -> float:
        value = self.storage.get(name)
        if value.type != TYPE_NUM:
            raise LetterboxRuntimeError(f"Variable {name} is not a number")
        return float(value.value)

    def _execute_math(self, instruction: MathOp) -> None:
        x = np.float64(self._expect_number(instruction.a))
        y = np.float64(self._expect_number(instruction.b))
        op = instruction.op
        # IEEE semantics: x/0 is inf or NaN rather than an error
        with np.errstate(all="ignore"):
            if op == "A":
                result = x + y
            elif op == "S":
                result = x - y
            elif op == "M":
                result = x * y
            elif op == "D":
                result = x / y
            elif op == "R":
                result = np.fmod(x, y)
            elif op == "E":
                result = 1.0 if x == y else 0.0
            elif op == "G":
                result = 1.0 if x > y else 0.0
            elif op == "L":
                result = 1.0 if x < y else 0.0
            else:
                raise LetterboxRuntimeError(f"Invalid math op {op}")
        self.storage.set(instruction.target, Value.number(float(result)))

    def _execute_bool(self, instruction: BoolOp) -> None:
        a = self.storage.as_bool(instruction.a)
        b = self.storage.as_bool(instruction.b)
        op = instruction.op
        if op == "E":
            result = a == b
        elif op == "A":
            result = a and b
        elif op == "O":
            result = a or b
        elif op == "X":
            result = a != b
        else:
            raise LetterboxRuntimeError(f"Invalid bool op {op}")
        self.storage.set(instruction.target, Value.number(1.0 if result else 0.0))

    def _execute_loop(self, instruction: Loop) -> None:
        count_value = self._expect_number(instruction.var)
        if math.isnan(count_value) or count_value <= 0:
            return
        if math.isinf(count_value) or math.floor(count_value) > self.loop_limit:
            raise LetterboxRuntimeError(f"Loop limit of {self.loop_limit} exceeded")
        for _ in range(math.floor(count_value)):
            self.evaluate(instruction.body)
            if self.finished:
                return

    def _execute_while(self, instruction: WhileLoop) -> None:
        iterations = 0
        while self.storage.as_bool(instruction.var):
            if iterations >= self.loop_limit:
                raise LetterboxRuntimeError(f"Loop limit of {self.loop_limit} exceeded")
            iterations += 1
            self.evaluate(instruction.body)
            if self.finished:
                return

    def _execute_input(self, instruction: GetInput) -> None:
        index = math.floor(instruction.index)
        if index >= len(self.inputs):
            raise LetterboxRuntimeError(
                f"Input index {index} out of range ({len(self.inputs)} inputs given)"
            )
        raw = self.inputs[index]
        if instruction.op == "N":
            self.storage.set(instruction.var, Value.number(parse_number(raw)))
        elif instruction.op == "S":
            self.storage.set(instruction.var, Value.text(raw))
        else:
            raise LetterboxRuntimeError(f"Invalid input op {instruction.op}")

    def _execute_program(self, instruction: Execute) -> None:
        stored = self.storage.get(instruction.var)
        if stored.type != TYPE_TEXT:
            raise LetterboxRuntimeError(f"Variable {instruction.var} does not hold program text")
        if self.depth >= MAX_EXECUTE_DEPTH:
            raise LetterboxRuntimeError(f"Execute depth limit of {MAX_EXECUTE_DEPTH} exceeded")
        source = substitute_parameters(str(stored.value), instruction.argmap)
        nested = Evaluator(
            source,
            self.storage,
            self.inputs,
            self.output,
            self.loop_limit,
            filename=f"<execute {instruction.var}>",
            verbose=self.verbose,
            depth=self.depth + 1,
            logger=self.logger,
            call_stack=self.call_stack,
            frame_name=describe_call(instruction),
            call_location=instruction.location,
        )
        nested.run()

    def _log_step(self, *, rule: str, location: Optional[SourceLocation]) -> None:
        env_snapshot = self.storage.snapshot() if self.verbose else None
        statement = location.statement if location else None
        self.logger.record(
            frame=self.frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record={"rule": rule, "depth": self.depth},
        )


def run_source(
    source: str,
    inputs: Sequence[str] = (),
    *,
    storage: Optional[Storage] = None,
    loop_limit: int = DEFAULT_LOOP_LIMIT,
    filename: str = "<string>",
    verbose: bool = False,
) -> str:
    """Run ``source`` and return everything it printed."""
    output: List[str] = []
    evaluator = Evaluator(
        source,
        storage if storage is not None else Storage(),
        list(inputs),
        output,
        loop_limit,
        filename=filename,
        verbose=verbose,
    )
    evaluator.run()
    return "".join(output)


@dataclass
class TracebackFrame:
    name: str
    depth: int
    location: Optional[SourceLocation]
    call_location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    """Renders the Execute call chain of a failed run, outermost program first."""

    def __init__(self, evaluator: Evaluator) -> None:
        self.evaluator = evaluator

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        logger = self.evaluator.logger
        for frame in self.evaluator.call_stack:
            entry = logger.last_entry_for_frame(frame.frame_id)
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    depth=frame.depth,
                    location=entry.source_location if entry else frame.call_location,
                    call_location=frame.call_location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: LetterboxError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            header = f"  {frame.name} [depth {frame.depth}]"
            if frame.call_location:
                header += f", called at line {frame.call_location.line} column {frame.call_location.column}"
            lines.append(header)
            if frame.location:
                lines.append(
                    f"    File \"{frame.location.file}\", line {frame.location.line}, "
                    f"column {frame.location.column}"
                )
                if frame.statement:
                    lines.append(f"      {frame.statement}")
            if frame.state_entry:
                lines.append(f"    Step {frame.state_entry.step_index} ({frame.state_entry.state_id})")
                if verbose and frame.state_entry.env_snapshot is not None:
                    variables = " ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Variables: {variables or '(none set)'}")
        rule = getattr(error, "rewrite_rule", None) or "runtime"
        message = getattr(error, "message", str(error))
        lines.append(f"{error.__class__.__name__}: {message} (instruction: {rule})")
        return "\n".join(lines)

    def to_json(self, error: LetterboxError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name, "depth": frame.depth}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.call_location:
                entry["called_from"] = frame.call_location.statement
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["variables"] = frame.state_entry.env_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": getattr(error, "message", str(error)),
                "instruction": getattr(error, "rewrite_rule", None),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)


__all__ = [
    "DEFAULT_LOOP_LIMIT",
    "MAX_EXECUTE_DEPTH",
    "Evaluator",
    "LetterboxError",
    "LetterboxParseError",
    "LetterboxRuntimeError",
    "StateLogger",
    "TracebackFormatter",
    "parse_number",
    "run_source",
    "describe_call",
    "substitute_parameters",
]
