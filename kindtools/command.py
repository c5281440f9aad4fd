"""Running external commands with captured output and structured errors."""

from __future__ import annotations

import codecs
import io
import os
import shlex
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from typing import IO, Any

from kindtools.concurrent import aggregate_concurrent
from kindtools.errors import with_stack

_CHUNK = 64 * 1024


class RunError(Exception):
    """A command that failed to start or exited unsuccessfully."""

    def __init__(
        self,
        command: Sequence[str],
        output: bytes = b"",
        inner: BaseException | None = None,
    ) -> None:
        super().__init__(list(command), output, inner)
        self.command = list(command)
        self.output = output
        self.inner = inner

    @property
    def cause(self) -> BaseException:
        """The underlying error, or this error when there is none."""
        return self.inner if self.inner is not None else self

    def pretty_command(self) -> str:
        """Return the command as it could be pasted into a shell."""
        return pretty_command(self.command[0], *self.command[1:])

    def __str__(self) -> str:
        return f'command "{self.pretty_command()}" failed with error: {self.inner}'


class _Sink:
    """Forwards byte chunks to a writer, decoding for text writers."""

    def __init__(self, writer: Any) -> None:
        self._writer = writer
        self._decoder = (
            codecs.getincrementaldecoder("utf-8")("replace")
            if isinstance(writer, io.TextIOBase)
            else None
        )
        self.error: BaseException | None = None

    def write(self, data: bytes, final: bool = False) -> None:
        if self.error is not None:
            return
        try:
            if self._decoder is not None:
                text = self._decoder.decode(data, final)
                if text:
                    self._writer.write(text)
            elif data:
                self._writer.write(data)
            flush = getattr(self._writer, "flush", None)
            if flush is not None:
                flush()
        except (OSError, ValueError) as exc:
            self.error = exc


def _pump(stream: IO[bytes], sinks: list[_Sink], lock: threading.Lock) -> None:
    with stream:
        for chunk in iter(lambda: stream.read1(_CHUNK), b""):
            with lock:
                for sink in sinks:
                    sink.write(chunk)
    with lock:
        for sink in sinks:
            sink.write(b"", final=True)


def _feed(source: Any, target: IO[bytes]) -> None:
    try:
        if isinstance(source, (bytes, bytearray, str)):
            target.write(source.encode() if isinstance(source, str) else bytes(source))
        else:
            while True:
                chunk = source.read(_CHUNK)
                if not chunk:
                    break
                target.write(chunk.encode() if isinstance(chunk, str) else chunk)
    except OSError:
        pass
    finally:
        try:
            target.close()
        except OSError:
            pass


class LocalCmd:
    """A command to run on the local host."""

    def __init__(self, name: str, args: Sequence[str] = ()) -> None:
        self.name = name
        self.args = list(args)
        self.env: list[str] | None = None
        self.stdin: Any = None
        self.stdout: Any = None
        self.stderr: Any = None

    def set_env(self, *args: str) -> LocalCmd:
        """Replace the environment with ``key=value`` entries; none inherits it."""
        self.env = list(args) or None
        return self

    def set_stdin(self, reader: Any) -> LocalCmd:
        self.stdin = reader
        return self

    def set_stdout(self, writer: Any) -> LocalCmd:
        self.stdout = writer
        return self

    def set_stderr(self, writer: Any) -> LocalCmd:
        self.stderr = writer
        return self

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]

    def _env_mapping(self) -> dict[str, str] | None:
        if self.env is None:
            return None
        mapping = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            mapping[key] = value
        return mapping

    def _stdin_spec(self) -> tuple[Any, Any]:
        source = self.stdin
        if source is None:
            return subprocess.DEVNULL, None
        if isinstance(source, (bytes, bytearray, str)):
            return subprocess.PIPE, source
        try:
            fd = source.fileno()
        except (AttributeError, OSError, ValueError):
            return subprocess.PIPE, source
        return fd, None

    def run(self) -> None:
        """Run the command, raising a wrapped RunError if it fails.

        Output goes to the configured writers and is also captured, combined,
        on the error.
        """
        argv = self.argv
        shared = self.stdout is self.stderr
        stdin_arg, feed_source = self._stdin_spec()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=stdin_arg,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if shared else subprocess.PIPE,
                env=self._env_mapping(),
            )
        except OSError as exc:
            raise with_stack(RunError(argv, b"", exc)) from exc

        combined = io.BytesIO()
        combined_sink = _Sink(combined)
        lock = threading.Lock()
        user_sinks: list[_Sink] = []
        threads = []

        def sinks_for(writer: Any) -> list[_Sink]:
            if writer is None:
                return [combined_sink]
            sink = _Sink(writer)
            user_sinks.append(sink)
            return [sink, combined_sink]

        threads.append(
            threading.Thread(target=_pump, args=(proc.stdout, sinks_for(self.stdout), lock))
        )
        if not shared:
            threads.append(
                threading.Thread(target=_pump, args=(proc.stderr, sinks_for(self.stderr), lock))
            )
        if feed_source is not None:
            threads.append(threading.Thread(target=_feed, args=(feed_source, proc.stdin)))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        returncode = proc.wait()

        inner: BaseException | None = None
        if returncode != 0:
            inner = subprocess.CalledProcessError(returncode, argv)
        else:
            inner = next((s.error for s in user_sinks if s.error is not None), None)
        if inner is not None:
            raise with_stack(RunError(argv, combined.getvalue(), inner))


class LocalCmder:
    """Creates commands that run on the local host."""

    def command(self, name: str, *args: str) -> LocalCmd:
        return LocalCmd(name, args)


DEFAULT_CMDER = LocalCmder()


def command(name: str, *args: str) -> LocalCmd:
    """Create a local command with the default cmder."""
    return DEFAULT_CMDER.command(name, *args)


def pretty_command(name: str, *args: str) -> str:
    """Return a command line that could be pasted into a shell."""
    return " ".join(shlex.quote(part) for part in (name, *args))


def run_error_for_error(err: BaseException | None) -> RunError | None:
    """Return the deepest RunError in the cause chain of ``err``, if any."""
    found = None
    while err is not None:
        if isinstance(err, RunError):
            found = err
        nxt = getattr(err, "cause", None)
        if not isinstance(nxt, BaseException) or nxt is err:
            break
        err = nxt
    return found


def _lines(data: bytes) -> list[str]:
    lines = data.decode("utf-8", errors="replace").split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def combined_output_lines(cmd: LocalCmd) -> list[str]:
    """Run ``cmd`` and return the lines of its stdout and stderr together."""
    buffer = io.BytesIO()
    cmd.set_stdout(buffer)
    cmd.set_stderr(buffer)
    cmd.run()
    return _lines(buffer.getvalue())


def output_lines(cmd: LocalCmd) -> list[str]:
    """Run ``cmd`` and return the lines of its stdout."""
    return _lines(output(cmd))


def output(cmd: LocalCmd) -> bytes:
    """Run ``cmd`` and return its stdout."""
    buffer = io.BytesIO()
    cmd.set_stdout(buffer)
    cmd.run()
    return buffer.getvalue()


def inherit_output(cmd: LocalCmd) -> LocalCmd:
    """Send the output of ``cmd`` to this process's stdout and stderr."""
    cmd.set_stderr(sys.stderr)
    cmd.set_stdout(sys.stdout)
    return cmd


def run_with_stdout_reader(
    cmd: LocalCmd, reader_func: Callable[[IO[bytes]], object]
) -> None:
    """Run ``cmd`` with its stdout piped to ``reader_func``, concurrently."""
    read_fd, write_fd = os.pipe()
    reader = os.fdopen(read_fd, "rb")
    writer = os.fdopen(write_fd, "wb")
    cmd.set_stdout(writer)

    def consume() -> None:
        with reader:
            reader_func(reader)

    def produce() -> None:
        with writer:
            cmd.run()

    aggregate_concurrent([consume, produce])


def run_with_stdin_writer(
    cmd: LocalCmd, writer_func: Callable[[IO[bytes]], object]
) -> None:
    """Run ``cmd`` with ``writer_func`` feeding its stdin, concurrently."""
    read_fd, write_fd = os.pipe()
    reader = os.fdopen(read_fd, "rb")
    writer = os.fdopen(write_fd, "wb")
    cmd.set_stdin(reader)

    def produce() -> None:
        with writer:
            writer_func(writer)

    def consume() -> None:
        with reader:
            cmd.run()

    aggregate_concurrent([produce, consume])