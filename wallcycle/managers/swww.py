"""Apply wallpapers per output through ``swww``."""

from __future__ import annotations

import shutil
import subprocess
import time
from typing import Callable, Iterable, List, Optional, Sequence

from ..config import TransitionSettings
from ..errors import ApplyFailure
from ..logging import get_logger
from ..selection import Pick

COMMAND_TIMEOUT = 30
DAEMON_POLL_ATTEMPTS = 10
DAEMON_POLL_INTERVAL = 0.15


class SwwwApplier:
    """Start ``swww-daemon`` when needed and set one image per output."""

    def __init__(
        self,
        transition: TransitionSettings,
        namespace: Optional[str] = None,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        spawn: Callable[..., object] = subprocess.Popen,
        which: Callable[[str], Optional[str]] = shutil.which,
        sleep: Callable[[float], None] = time.sleep,
        logger=None,
    ) -> None:
        self.transition = transition
        self.namespace = namespace
        self._runner = runner
        self._spawn = spawn
        self._which = which
        self._sleep = sleep
        self.logger = logger or get_logger("wallcycle.swww")

    def _namespace_args(self) -> List[str]:
        return ["--namespace", self.namespace] if self.namespace else []

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        return self._runner(list(args), check=True, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)

    def _query(self, binary: str) -> bool:
        try:
            self._run([binary, "query", *self._namespace_args()])
        except (OSError, subprocess.SubprocessError):
            return False
        return True

    def ensure_running(self) -> str:
        """Return the ``swww`` binary path once its daemon answers queries."""

        binary = self._which("swww")
        if not binary:
            raise ApplyFailure("swww command not found in PATH")
        if self._query(binary):
            return binary

        daemon = self._which("swww-daemon") or "swww-daemon"
        self.logger.info("swww.daemon_starting", namespace=self.namespace)
        try:
            self._spawn(
                [daemon, *self._namespace_args()],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ApplyFailure(f"Could not start swww-daemon: {exc}") from exc

        for _ in range(DAEMON_POLL_ATTEMPTS):
            if self._query(binary):
                return binary
            self._sleep(DAEMON_POLL_INTERVAL)
        raise ApplyFailure("swww-daemon did not become ready")

    def command_for(self, binary: str, pick: Pick) -> List[str]:
        transition = self.transition
        args = [
            binary,
            "img",
            *self._namespace_args(),
            "-o",
            pick.output,
            pick.path,
            "--transition-type",
            transition.type,
            "--transition-fps",
            str(transition.fps),
            "--transition-duration",
            str(transition.duration),
        ]
        if transition.angle is not None:
            args.extend(["--transition-angle", str(transition.angle)])
        if transition.pos:
            args.extend(["--transition-pos", transition.pos])
        return args

    def apply(self, picks: Iterable[Pick]) -> None:
        binary = self.ensure_running()
        for pick in picks:
            try:
                self._run(self.command_for(binary, pick))
            except subprocess.TimeoutExpired as exc:
                raise ApplyFailure(f"Timed out applying {pick.path} to {pick.output}") from exc
            except subprocess.CalledProcessError as exc:
                stderr = (exc.stderr or "").strip()
                raise ApplyFailure(f"swww failed for {pick.output}: {stderr or exc}") from exc
            except OSError as exc:
                raise ApplyFailure(f"swww failed for {pick.output}: {exc}") from exc
            self.logger.debug("swww.applied", output=pick.output, path=pick.path)
