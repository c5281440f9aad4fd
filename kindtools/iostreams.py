"""The standard input, output and error streams as one value."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO, Any


@dataclass
class IOStreams:
    """Input, output and error streams, passed around together."""

    in_: IO[Any]
    out: IO[Any]
    err_out: IO[Any]


def standard_iostreams() -> IOStreams:
    """Return the process's current stdin, stdout and stderr."""
    return IOStreams(in_=sys.stdin, out=sys.stdout, err_out=sys.stderr)