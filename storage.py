from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, Union

import numpy as np

from lexer import LetterboxRuntimeError


TYPE_NUM = "NUM"
TYPE_TEXT = "TEXT"

VALID_VARS = "abcdefghijklmnopqrstuvwxyz"


def is_var(name: str) -> bool:
    return len(name) == 1 and name in VALID_VARS


def format_number(x: float) -> str:
    # Shortest round-tripping positional form: 4.0 -> "4", 1e20 -> "100000000000000000000".
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    return np.format_float_positional(np.float64(x), trim="-")


@dataclass(frozen=True)
class Value:
    type: str
    value: Union[float, str]

    def __post_init__(self) -> None:
        if self.type not in (TYPE_NUM, TYPE_TEXT):
            raise ValueError(f"Unknown value type {self.type!r}")

    @classmethod
    def number(cls, x: float) -> "Value":
        return cls(TYPE_NUM, float(x))

    @classmethod
    def text(cls, s: str) -> "Value":
        return cls(TYPE_TEXT, s)

    @classmethod
    def zero(cls) -> "Value":
        """The default value of every variable."""
        return cls(TYPE_NUM, 0.0)

    @property
    def is_number(self) -> bool:
        return self.type == TYPE_NUM

    def truthy(self) -> bool:
        if self.type == TYPE_TEXT:
            # any text, even empty, is true
            return True
        return self.value != 0.0

    def __str__(self) -> str:
        if self.type == TYPE_NUM:
            return format_number(float(self.value))
        return str(self.value)


@dataclass
class Storage:
    """Single-letter variable slots shared by a program and everything it executes.

    Reading a variable that was never written creates it holding zero.
    """

    values: Dict[str, Value] = field(default_factory=dict)

    def _check(self, name: str) -> None:
        if not is_var(name):
            raise LetterboxRuntimeError(f"Invalid variable name '{name}'", rewrite_rule="VAR")

    def get(self, name: str) -> Value:
        self._check(name)
        if not self.has(name):
            self.values[name] = Value.zero()
        return self.values[name]

    def set(self, name: str, value: Value) -> None:
        self._check(name)
        self.values[name] = value

    def copy(self, source: str, target: str) -> None:
        self.set(target, self.get(source))

    def reset(self, name: str) -> None:
        self._check(name)
        self.values.pop(name, None)

    def reset_all(self) -> None:
        self.values.clear()

    def as_bool(self, name: str) -> bool:
        return self.get(name).truthy()

    def has(self, name: str) -> bool:
        return name in self.values

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = str(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(self.values[k]) for k in sorted(self.values)}
