import shlex
import subprocess
import threading
from typing import Callable, List, Optional, Sequence, Union

from scheduler import Scheduler
from utils import get_logger, received_text, sending_text

LineCallback = Callable[[str], None]
ExitCallback = Callable[[Optional[int]], None]


class EngineProcess:
    """UCI engine subprocess whose output is delivered on the control loop.

    A daemon thread reads stdout and posts each line to the scheduler, so
    ``on_line`` and ``on_exit`` always run on the loop's thread.
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        scheduler: Scheduler,
        on_line: LineCallback,
        on_exit: ExitCallback,
        *,
        workdir: Optional[str] = None,
        echo: bool = False,
    ) -> None:
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        self._scheduler = scheduler
        self._on_line = on_line
        self._on_exit = on_exit
        self._echo = echo
        self._log = get_logger()
        self._write_lock = threading.Lock()
        self._proc = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            cwd=workdir,
        )
        self._reader = threading.Thread(target=self._read_output, daemon=True)
        self._reader.start()

    def send(self, command: str) -> None:
        if self._echo:
            self._log.debug(sending_text(command))
        with self._write_lock:
            if not self._proc.stdin:
                return
            try:
                self._proc.stdin.write(command + "\n")
                self._proc.stdin.flush()
            except (BrokenPipeError, ValueError):
                # stdin already closed; the exit notification reports the death.
                pass

    def poll(self) -> Optional[int]:
        return self._proc.poll()

    @property
    def alive(self) -> bool:
        return self._proc.poll() is None

    def stop(self, timeout: float = 2.0) -> None:
        self.send("quit")
        if self._proc.stdin:
            try:
                self._proc.stdin.close()
            except OSError:
                pass
        try:
            self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                try:
                    self._proc.wait(timeout=1.0)
                except subprocess.TimeoutExpired:
                    pass

    def stop_in_background(self, timeout: float = 2.0) -> threading.Thread:
        """Run :meth:`stop` on a helper thread so the control loop never waits."""
        thread = threading.Thread(target=self.stop, args=(timeout,), daemon=True)
        thread.start()
        return thread

    def _read_output(self) -> None:
        stdout = self._proc.stdout
        if stdout is not None:
            for raw in stdout:
                line = raw.strip()
                if not line:
                    continue
                if self._echo:
                    self._log.debug(received_text(line))
                self._scheduler.post(self._on_line, line)
        self._scheduler.post(self._on_exit, self._proc.wait())


def spawn_engine(
    command: Union[str, Sequence[str]],
    scheduler: Scheduler,
    *,
    workdir: Optional[str] = None,
    echo: bool = False,
) -> Callable[[LineCallback, ExitCallback], EngineProcess]:
    """Build an engine factory suitable for :class:`search_session.SearchSession`."""

    def factory(on_line: LineCallback, on_exit: ExitCallback) -> EngineProcess:
        return EngineProcess(command, scheduler, on_line, on_exit, workdir=workdir, echo=echo)

    return factory
