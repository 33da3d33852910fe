from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from tfprov.proc import CommandResult

ErrorCategory = Literal["retryable", "fatal"]


class ProvisioningException(Exception):
    pass


class OperationCancelled(ProvisioningException):
    pass


class InvalidDeploymentPlan(ProvisioningException):
    pass


class CommandError(ProvisioningException):
    """A lifecycle phase failed; carries the failing command's captured output verbatim."""

    def __init__(
        self,
        message: str,
        *,
        result: CommandResult | None = None,
        category: ErrorCategory = "fatal",
    ) -> None:
        self.result = result
        self.category = category
        super().__init__(self._build_message(message))

    @property
    def retryable(self) -> bool:
        return self.category == "retryable"

    @property
    def diagnostic(self) -> str:
        if self.result is None:
            return ""
        return (self.result.stderr or self.result.stdout).strip()

    def _build_message(self, message: str) -> str:
        if self.result is None:
            return message
        cmd = " ".join(self.result.command)
        return (
            f"{message} (category={self.category}, returncode={self.result.returncode}, "
            f"command={cmd!r}, detail={self.diagnostic!r})"
        )


class ToolUnavailable(CommandError):
    pass


class ToolVersionUnsupported(CommandError):
    pass


class InitFailed(CommandError):
    pass


class ParameterWriteFailed(CommandError):
    pass


class MissingEnvironmentValue(ParameterWriteFailed):
    def __init__(self, key: str, *, source: str) -> None:
        self.key = key
        super().__init__(f"Environment value '{key}' referenced by {source} is not set")


class ValidateFailed(CommandError):
    pass


class PlanFailed(CommandError):
    pass


class ApplyFailed(CommandError):
    pass


class OutputParseFailed(CommandError):
    pass


class DestroyFailed(CommandError):
    pass
