from __future__ import annotations

import logging
import queue
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from .command import TranscodeJob
from .errors import TranscodeError
from .timecode import to_seconds

# stderr lines that mean ffmpeg is about to give up
FATAL_PATTERNS = ("already exists. Exiting.",)

_DONE = object()


@dataclass(frozen=True)
class ProgressEvent:
    encoded_seconds: float
    percent: float
    finished: bool = False


def parse_progress_line(line: str, total_duration: float) -> Optional[ProgressEvent]:
    """Interpret one ``key=value`` line of ``-progress`` output."""
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return ProgressEvent(total_duration, 100.0, finished=True)
    if key != "out_time":
        return None
    try:
        seconds = max(0.0, to_seconds(value))
    except ValueError:
        return None
    percent = min(100.0, seconds / total_duration * 100) if total_duration > 0 else 0.0
    return ProgressEvent(seconds, percent)


def spawn_ffmpeg(args: Sequence[str]) -> subprocess.Popen:
    return subprocess.Popen(list(args), stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE)


class TranscodeTask:
    """Owns one ffmpeg process from launch to exit.

    stdout and stderr are drained on worker threads so a slow consumer never
    blocks the encoder. Progress is exposed through ``progress()`` and the
    outcome through ``wait()`` (or the ``future`` attribute).
    """

    def __init__(self, job: TranscodeJob, cmd: str = "ffmpeg") -> None:
        self.job = job
        self.cmd = cmd
        self.future: Future = Future()
        self._events: "queue.Queue[object]" = queue.Queue()
        self._stderr_lines: List[str] = []
        self._fatal: Optional[str] = None
        self._cancelled = threading.Event()
        self._process: Optional[subprocess.Popen] = None
        self._pool: Optional[ThreadPoolExecutor] = None

    def start(self) -> "TranscodeTask":
        args = [self.cmd] + self.job.args()
        logging.debug("$ %s", self.job.command_line(self.cmd))
        try:
            self._process = spawn_ffmpeg(args)
        except OSError as e:
            raise TranscodeError(f"Could not start {self.cmd}: {e}") from e
        self._pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="ffmpeg")
        self._pool.submit(self._read_progress)
        stderr_done = self._pool.submit(self._read_errors)
        self._pool.submit(self._watch, stderr_done)
        return self

    # ------------------------------
    # Stream readers
    # ------------------------------
    def _read_progress(self) -> None:
        try:
            for raw in self._process.stdout:
                event = parse_progress_line(raw.decode(errors="replace"), self.job.info.duration)
                if event is not None:
                    self._events.put(event)
        finally:
            self._events.put(_DONE)

    def _read_errors(self) -> None:
        for raw in self._process.stderr:
            line = raw.decode(errors="replace").rstrip()
            if not line:
                continue
            self._stderr_lines.append(line)
            if any(p in line for p in FATAL_PATTERNS):
                if self._fatal is None:
                    self._fatal = line
                    logging.error("ffmpeg: %s", line)
                    self._process.kill()
            else:
                logging.warning("ffmpeg: %s", line)

    def _watch(self, stderr_done: Future) -> None:
        code = self._process.wait()
        stderr_done.result()
        if self._cancelled.is_set():
            self.future.set_exception(TranscodeError("Transcode cancelled", exit_code=130))
        elif self._fatal is not None:
            self.future.set_exception(TranscodeError(f"ffmpeg: {self._fatal}", stderr=self.stderr))
        elif code != 0:
            self.future.set_exception(
                TranscodeError(f"ffmpeg exited with code {code}", exit_code=code, stderr=self.stderr)
            )
        else:
            self.future.set_result(code)

    # ------------------------------
    # Public API
    # ------------------------------
    @property
    def stderr(self) -> str:
        return "\n".join(self._stderr_lines)

    def progress(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._events.get()
            if item is _DONE:
                return
            yield item

    def cancel(self) -> None:
        self._cancelled.set()
        if self._process is not None and self._process.poll() is None:
            self._process.kill()

    def wait(self, timeout: Optional[float] = None) -> int:
        try:
            return self.future.result(timeout)
        finally:
            if self.future.done() and self._pool is not None:
                self._pool.shutdown(wait=True)


def run_transcode(
    job: TranscodeJob,
    cmd: str = "ffmpeg",
    on_progress: Optional[Callable[[ProgressEvent], None]] = None,
) -> None:
    """Run ``job`` to completion, raising ``TranscodeError`` on failure."""
    task = TranscodeTask(job, cmd).start()
    try:
        for event in task.progress():
            if on_progress is not None:
                on_progress(event)
    except BaseException:
        task.cancel()
        raise
    task.wait()
