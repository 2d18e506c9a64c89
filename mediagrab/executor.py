"""Run one ``InvocationDescriptor`` as a child process.

The executor never retries and never looks at the filesystem. It enforces
the descriptor's wall-clock timeout and keeps only a bounded tail of the
child's stdout/stderr so a chatty extractor cannot grow memory unbounded.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from collections import deque
from typing import IO, Callable, Deque, Optional

from mediagrab.errors import ExecutionError, ExecutionTimeout
from mediagrab.models import InvocationDescriptor

logger = logging.getLogger(__name__)

READ_SIZE = 8192
DEFAULT_OUTPUT_LIMIT = 1024 * 1024


class BoundedBuffer:
    """Keeps at most ``limit`` trailing bytes."""

    def __init__(self, limit: int) -> None:
        self.limit = max(int(limit), 1)
        self._chunks: Deque[bytes] = deque()
        self._size = 0
        self.dropped = 0
        self._lock = threading.Lock()

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._lock:
            if len(chunk) > self.limit:
                self.dropped += len(chunk) - self.limit
                chunk = chunk[-self.limit:]
            self._chunks.append(chunk)
            self._size += len(chunk)
            while self._size > self.limit:
                head = self._chunks.popleft()
                overflow = self._size - self.limit
                if len(head) > overflow:
                    self._chunks.appendleft(head[overflow:])
                    self._size -= overflow
                    self.dropped += overflow
                else:
                    self._size -= len(head)
                    self.dropped += len(head)

    def __len__(self) -> int:
        return self._size

    def text(self) -> str:
        with self._lock:
            data = b"".join(self._chunks)
        return data.decode("utf-8", "ignore")


def _drain(stream: Optional[IO[bytes]], sink: BoundedBuffer) -> None:
    if stream is None:
        return
    try:
        for chunk in iter(lambda: stream.read(READ_SIZE), b""):
            sink.write(chunk)
    except (OSError, ValueError):
        # Stream closed underneath us after a kill.
        pass


def _kill(proc: subprocess.Popen) -> None:
    """Kill the child and anything it spawned (yt-dlp forks ffmpeg)."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            proc.kill()
    else:
        proc.kill()


def _tail(text: str, lines: int = 6) -> str:
    return "\n".join(line for line in text.strip().splitlines()[-lines:])


def execute(
    descriptor: InvocationDescriptor,
    *,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
    cwd: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Run ``descriptor`` to completion; return the captured output tail.

    Raises ``ExecutionTimeout`` when the child outlives ``descriptor.timeout``
    and ``ExecutionError`` on a non-zero exit or spawn failure.
    """
    if descriptor.pre_delay > 0:
        sleep(descriptor.pre_delay)

    env = None
    if descriptor.env:
        env = dict(os.environ)
        env.update(descriptor.env)

    logger.debug("Executing %s: %s", descriptor.name, " ".join(descriptor.argv)[:200])
    try:
        proc = subprocess.Popen(
            descriptor.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=cwd,
            env=env,
            start_new_session=os.name == "posix",
        )
    except OSError as exc:
        raise ExecutionError(f"{descriptor.program} could not be started: {exc}") from exc

    stdout_buf = BoundedBuffer(output_limit)
    stderr_buf = BoundedBuffer(output_limit)
    drains = [
        threading.Thread(target=_drain, args=(proc.stdout, stdout_buf), daemon=True),
        threading.Thread(target=_drain, args=(proc.stderr, stderr_buf), daemon=True),
    ]
    for thread in drains:
        thread.start()

    timed_out = False
    try:
        proc.wait(timeout=descriptor.timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill(proc)
        proc.wait()
    for thread in drains:
        thread.join(timeout=1)
    for stream, thread in zip((proc.stdout, proc.stderr), drains):
        # A grandchild may still hold the pipe open; leave that one to the GC.
        if stream is not None and not thread.is_alive():
            stream.close()

    if timed_out:
        raise ExecutionTimeout(
            f"{descriptor.name} timed out after {descriptor.timeout:g}s",
            output=_tail(stderr_buf.text()),
        )
    if proc.returncode != 0:
        detail = _tail(stderr_buf.text()) or _tail(stdout_buf.text())
        logger.debug("%s exited with code %s: %s", descriptor.name, proc.returncode, detail)
        raise ExecutionError(
            f"{descriptor.name} exited with code {proc.returncode}",
            output=detail,
        )
    return _tail(stdout_buf.text(), lines=20)
