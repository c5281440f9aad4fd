"""Error wrapping, stack capture and aggregation helpers."""

from __future__ import annotations

import traceback
from collections.abc import Iterable, Iterator


def _capture_stack() -> traceback.StackSummary:
    # Drop the frames of this helper and of the WrappedError constructor.
    return traceback.StackSummary.from_list(traceback.extract_stack()[:-2])


def _cause(err: BaseException) -> BaseException | None:
    """Return the error that ``err`` wraps, if it declares one."""
    cause = getattr(err, "cause", None)
    if isinstance(cause, BaseException) and cause is not err:
        return cause
    return None


def _is(err: BaseException | None, target: object) -> bool:
    """Report whether ``target`` appears in the cause chain of ``err``.

    ``target`` may be an exception instance (matched by identity) or an
    exception class (matched with ``isinstance``).
    """
    while err is not None:
        if err is target:
            return True
        if isinstance(target, type) and isinstance(err, target):
            return True
        if isinstance(err, Aggregate) and err.contains(target):
            return True
        err = _cause(err)
    return False


class WrappedError(Exception):
    """An error annotated with an optional message and the stack where it was wrapped."""

    def __init__(self, cause: BaseException, message: str | None = None) -> None:
        super().__init__(cause, message)
        self.cause = cause
        self.message = message
        self.stack = _capture_stack()
        self.__cause__ = cause

    def __str__(self) -> str:
        if self.message is None:
            return str(self.cause)
        return f"{self.message}: {self.cause}"


class Aggregate(Exception):
    """Several errors held together without a single meaning of their own."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(*self.errors)

    def _leaves(self) -> Iterator[BaseException]:
        for err in self.errors:
            if isinstance(err, Aggregate):
                yield from err._leaves()
            else:
                yield err

    def contains(self, target: object) -> bool:
        """Report whether any held error is, or wraps, ``target``."""
        return any(_is(err, target) for err in self._leaves())

    def __str__(self) -> str:
        if not self.errors:
            return ""
        if len(self.errors) == 1:
            return str(self.errors[0])
        seen: dict[str, None] = {}
        for err in self._leaves():
            seen.setdefault(str(err))
        result = ", ".join(seen)
        if len(seen) == 1:
            return result
        return f"[{result}]"


def _new_aggregate(errlist: Iterable[BaseException | None]) -> Aggregate | None:
    errs = [err for err in errlist if err is not None]
    return Aggregate(errs) if errs else None


def _flatten(agg: Aggregate | None) -> Aggregate | None:
    if agg is None:
        return None
    result: list[BaseException] = []
    for err in agg.errors:
        if isinstance(err, Aggregate):
            flat = _flatten(err)
            if flat is not None:
                result.extend(flat.errors)
        elif err is not None:
            result.append(err)
    return _new_aggregate(result)


def _reduce(err: BaseException | None) -> BaseException | None:
    if isinstance(err, Aggregate):
        if len(err.errors) == 1:
            return err.errors[0]
        if not err.errors:
            return None
    return err


def new_aggregate(errlist: Iterable[BaseException | None]) -> WrappedError | None:
    """Combine errors into one flattened aggregate, wrapped with a stack.

    ``None`` entries are dropped; a single remaining error is returned on its
    own (wrapped), and no errors at all gives ``None``.
    """
    return with_stack(_reduce(_flatten(_new_aggregate(list(errlist)))))


def errors(err: BaseException | None) -> list[BaseException]:
    """Return the errors of the deepest Aggregate in the cause chain of ``err``."""
    found: Aggregate | None = None
    while err is not None:
        if isinstance(err, Aggregate):
            found = err
        err = _cause(err)
    return list(found.errors) if found is not None else []


def wrap(err: BaseException | None, message: str) -> WrappedError | None:
    """Annotate ``err`` with ``message`` and the current stack; ``None`` stays ``None``."""
    if err is None:
        return None
    return WrappedError(err, message)


def with_stack(err: BaseException | None) -> WrappedError | None:
    """Annotate ``err`` with the current stack; ``None`` stays ``None``."""
    if err is None:
        return None
    return WrappedError(err)


def stack_trace(err: BaseException | None) -> traceback.StackSummary | None:
    """Return the deepest recorded stack in the cause chain of ``err``."""
    stack = None
    while err is not None:
        candidate = getattr(err, "stack", None)
        if isinstance(candidate, traceback.StackSummary):
            stack = candidate
        err = _cause(err)
    return stack