"""Invocation builder.

Turns the tokens following the host program's own name into the program
path plus argument list that the launcher executes.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .errors import InvalidArgumentsError

__all__ = ["Invocation", "build_invocation"]


@dataclass(frozen=True)
class Invocation:
    """What to execute.

    Attributes:
        program: Path (or PATH-resolvable name) of the executable
        args: Arguments passed after the program, in order
    """

    program: str
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        return " ".join(self.argv)


def build_invocation(tokens: Sequence[str]) -> Invocation:
    """Build an Invocation from an argument vector.

    Existence or executability of the program is not checked here, that
    surfaces when launching.

    Raises:
        InvalidArgumentsError: If tokens is empty
    """
    if not tokens:
        raise InvalidArgumentsError("provide a binary which should be started")

    return Invocation(program=tokens[0], args=tuple(tokens[1:]))
