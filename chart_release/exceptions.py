"""Exceptions related to chart-release."""

__all__ = [
    "ReleaseException",
    "InputException",
    "ConfigException",
    "CommandException",
    "HelmException",
    "GitException",
    "GitHubApiException",
    "TemplateException",
    "RegistryException",
    "SignedCommitException",
]


class ReleaseException(Exception):
    """Generic base exception used for this library."""


class InputException(ReleaseException):
    """Raised when the input files or values are not formatted as expected."""


class ConfigException(InputException):
    """Raised when the configuration file is missing or invalid."""


class CommandException(ReleaseException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class GitException(ReleaseException):
    """Raised when a git operation against the local repository fails."""


class GitHubApiException(ReleaseException):
    """Raised when a GitHub REST or GraphQL call fails."""

    def __init__(self, operation: str, message: str, status: int | None = None) -> None:
        super().__init__(f"GitHub API {operation} failed: {message}")
        self.operation = operation
        self.status = status


class TemplateException(ReleaseException):
    """Raised when a template fails to compile or render."""


class RegistryException(ReleaseException):
    """Raised when an OCI registry operation fails."""


class SignedCommitException(ReleaseException):
    """Raised when a signed commit cannot be validated or created."""
