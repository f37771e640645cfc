"""Sequential, fail-fast execution of provisioning steps."""

from typing import Iterable, Optional

from bhimainstaller.errors import InstallerError
from bhimainstaller.models import RunReport, Step, StepResult, StepStatus


class StepRunner:
    """Runs steps one at a time in declared order and halts on the first failure.

    Transitions: pending -> skipped when the step is disabled or already
    satisfied; pending -> running -> succeeded when ``apply`` succeeds and
    ``verify`` passes; running -> failed otherwise.
    """

    def __init__(self, logger, console, manifest_service=None):
        self.logger = logger
        self.console = console
        self.manifest_service = manifest_service

    def run(self, steps: Iterable[Step]) -> RunReport:
        report = RunReport()
        for step in steps:
            result = self.run_step(step)
            report.results.append(result)
            if result.status == StepStatus.FAILED:
                self.logger.error("Halting: step %s failed, later steps were not attempted.", step.name)
                break
        return report

    def run_step(self, step: Step) -> StepResult:
        if step.enabled is not None and not step.enabled():
            return self._skip(step, "disabled")

        try:
            satisfied = step.is_satisfied() if step.is_satisfied is not None else False
        except InstallerError as exc:
            return self._fail(step, StepResult.failure(step.name, str(exc), exception=exc))
        except Exception as exc:
            return self._fail_unexpected(step, exc)

        if satisfied:
            return self._skip(step, "already satisfied")

        self._transition(step, StepStatus.RUNNING)
        if self.manifest_service:
            self.manifest_service.step_started(step.name)

        try:
            result = step.apply()
        except InstallerError as exc:
            return self._fail(step, StepResult.failure(step.name, str(exc), exception=exc))
        except Exception as exc:
            return self._fail_unexpected(step, exc)

        if result.status == StepStatus.FAILED:
            return self._fail(step, result)

        if step.verify is not None:
            try:
                verified = step.verify()
            except InstallerError as exc:
                return self._fail(step, StepResult.failure(step.name, str(exc), exception=exc))
            except Exception as exc:
                return self._fail_unexpected(step, exc)
            if not verified:
                return self._fail(step, StepResult.failure(step.name, "post-apply verification failed"))

        self._transition(step, StepStatus.SUCCEEDED)
        self.console.print(f"[green]✓ {step.description or step.name}[/green]")
        if self.manifest_service:
            self.manifest_service.step_finished(step.name, StepStatus.SUCCEEDED.value)
        return StepResult.success(step.name)

    def _skip(self, step: Step, reason: str) -> StepResult:
        self._transition(step, StepStatus.SKIPPED, reason)
        self.console.print(f"[dim]- {step.description or step.name} ({reason})[/dim]")
        if self.manifest_service:
            self.manifest_service.step_started(step.name)
            self.manifest_service.step_finished(
                step.name, StepStatus.SKIPPED.value, details={"reason": reason}
            )
        return StepResult(name=step.name, status=StepStatus.SKIPPED, error=None)

    def _fail(self, step: Step, result: StepResult) -> StepResult:
        self._transition(step, StepStatus.FAILED, result.error)
        self.console.print(f"[bold red]✗ {step.description or step.name}[/bold red]: {result.error}")
        if self.manifest_service:
            if not self.manifest_service.is_running(step.name):
                self.manifest_service.step_started(step.name)
            self.manifest_service.step_finished(step.name, StepStatus.FAILED.value, error=result.error)
        return result

    def _fail_unexpected(self, step: Step, exc: Exception) -> StepResult:
        self.logger.debug("Step %s raised %s", step.name, type(exc).__name__, exc_info=exc)
        error = f"{type(exc).__name__}: {exc}"
        return self._fail(step, StepResult.failure(step.name, error, exception=exc))

    def _transition(self, step: Step, status: StepStatus, detail: Optional[str] = None):
        if detail:
            self.logger.info("[%s] %s: %s", step.name, status.value, detail)
        else:
            self.logger.info("[%s] %s", step.name, status.value)
