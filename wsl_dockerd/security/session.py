"""
Privileged guest session

A session is an ordered list of typed steps that runs as one root bash
process in the guest, so the operator is asked for privileges at most once.
Step i exits the script with status STEP_EXIT_BASE + i when any of its
commands fails, which makes "which phase failed" a property of the exit
status rather than of error text.
"""

import logging
import subprocess
from dataclasses import dataclass, field

from wsl_dockerd.core.exceptions import PreconditionError
from wsl_dockerd.guest.shell import GuestShell
from wsl_dockerd.security.exceptions import ProvisionError, error_for_phase
from wsl_dockerd.security.models import Phase

logger = logging.getLogger(__name__)

STEP_EXIT_BASE = 100
STEP_MARKER = "::wsl-dockerd-step"


@dataclass(frozen=True)
class Step:
    """
    One unit of privileged work

    Attributes:
        phase: Phase reported if the step fails
        description: Human-readable summary for logs
        commands: Shell commands run in order; the step fails on the first
            non-zero status
    """

    phase: Phase
    description: str
    commands: tuple[str, ...]

    def render(self, index: int) -> str:
        body = " &&\n  ".join(self.commands)
        return (
            f"echo '{STEP_MARKER} {index} {self.phase.value}'\n"
            f"{{\n  {body}\n}} || exit {STEP_EXIT_BASE + index}\n"
        )


@dataclass
class SessionResult:
    """Outcome of a session that ran every step"""

    completed: list[Phase] = field(default_factory=list)
    output: str = ""


class PrivilegedSession:
    """Ordered steps executed as a single privileged guest invocation"""

    def __init__(self, shell: GuestShell, steps: list[Step], timeout: float | None = None):
        if len(steps) >= 256 - STEP_EXIT_BASE:
            raise ValueError(f"too many steps for one session: {len(steps)}")
        self.shell = shell
        self.steps = list(steps)
        self.timeout = timeout

    @property
    def phases(self) -> list[Phase]:
        return [step.phase for step in self.steps]

    def script(self) -> str:
        """Compile the steps into one bash script."""
        parts = ["set -o pipefail\n"]
        for index, step in enumerate(self.steps):
            parts.append(f"# {step.phase.value}: {step.description}\n")
            parts.append(step.render(index))
        parts.append("exit 0\n")
        return "".join(parts)

    def _started_steps(self, output: str) -> int:
        """Number of steps whose start marker appears in the output."""
        return sum(1 for line in output.splitlines() if line.startswith(STEP_MARKER))

    def _failure(self, index: int, output: str, reason: str) -> ProvisionError:
        step = self.steps[index]
        done = [s.phase.value for s in self.steps[:index]]
        logger.error(f"[{self.shell.name}] Step {index} ({step.phase.value}) failed: {reason}")
        message = f"{step.description} failed: {reason}"
        if step.phase is Phase.SERVICE_RESTART and Phase.CONFIG_WRITE in self.phases[:index]:
            message += (
                " - the new daemon configuration is written but the daemon may be down"
                " or still running the previous configuration"
            )
        if done:
            message += f" (completed: {', '.join(done)})"
        return error_for_phase(step.phase, message, output=output)

    def run(self) -> SessionResult:
        """
        Run every step in order as root.

        Returns:
            SessionResult listing all completed phases

        Raises:
            ProvisionError: Subclass for the phase whose step failed
            PreconditionError: The session itself could not start
        """
        if not self.steps:
            return SessionResult()

        logger.info(
            f"[{self.shell.name}] Starting privileged session: "
            f"{', '.join(p.value for p in self.phases)}"
        )
        try:
            result = self.shell.run(self.script(), privileged=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            output = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            started = self._started_steps(output)
            index = max(started - 1, 0)
            raise self._failure(index, output, f"timed out after {self.timeout}s") from e

        output = (result.stdout or "") + (result.stderr or "")
        code = result.returncode

        if code == 0:
            logger.info(f"[{self.shell.name}] Privileged session completed")
            return SessionResult(completed=self.phases, output=output)

        index = code - STEP_EXIT_BASE
        if 0 <= index < len(self.steps):
            stderr_tail = (result.stderr or "").strip().splitlines()[-1:] or ["no error output"]
            raise self._failure(index, output, stderr_tail[0])

        logger.error(f"[{self.shell.name}] Privileged session could not start (exit {code})")
        raise PreconditionError(
            f"Could not open a privileged session in {self.shell.name} (exit {code}): "
            f"{(result.stderr or '').strip()[:200] or 'no error output'}",
            recovery_hint="Make sure you can run commands as root in the guest (wsl -u root / sudo)",
        )
