"""Exceptions raised by the deployment engine."""


class DeploymentError(Exception):
    """Base class for failures while deploying, destroying or inspecting a stack."""

    def __init__(self, message: str, stack_name: str | None = None):
        super().__init__(message)
        self.message = message
        self.stack_name = stack_name


class ValidationError(DeploymentError):
    """Invalid input, detected before any call to CloudFormation."""


class MissingParametersError(ValidationError):
    """One or more template parameters have no value from any source."""

    def __init__(self, missing: list[str], stack_name: str | None = None):
        message = f"The following CloudFormation Parameters are missing a value: {', '.join(missing)}"
        if stack_name:
            message = f"{stack_name}: {message}"
        super().__init__(message, stack_name=stack_name)
        self.missing = missing


class ChangeSetCreationError(DeploymentError):
    """A change set ended up in a failed state for a reason other than 'no changes'."""


class StackFailedError(DeploymentError):
    """A stack operation finished in a failed or rolled back state."""


class StackVanishedError(StackFailedError):
    """The stack disappeared while we were operating on it."""


class DriftDetectionError(DeploymentError):
    """Drift detection failed or did not finish in time."""


class HotswapDeclinedError(Exception):
    """Raised by a hotswap hook that cannot evaluate the change; a full deployment follows."""


def suffix_with_errors(message: str, errors: list[str]) -> str:
    """Append errors collected from the stack event stream to a message."""
    return f"{message}: {', '.join(errors)}" if errors else message
