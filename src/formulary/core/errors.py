"""Module defining custom exceptions for formula evaluation."""

from __future__ import annotations

from typing import Any, Self

# Exit Codes
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2
EXIT_TRANSIENT_ERROR = 3
EXIT_VERIFICATION_FAILED = 4


class FormulaError(Exception):
    """Base exception class with context propagation.

    All exceptions raised by formulary inherit from this class.
    Context is a dictionary that accumulates relevant information
    as the exception propagates up the call stack.

    Example:
        raise FormulaError("An error occurred", context={"formula": "ccap"})

        # Or with context propagation
        try:
            ...
        except FormulaError as e:
            raise e.with_context(version="v1.0.0", platform="macos")
    """
    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def with_context(self, **new_context: Any) -> Self:
        """Returns the exception with updated context.

        Args:
            **new_context: Additional context to add to the exception.

        Returns:
            The same exception instance with merged context.
        """
        self.context.update(new_context)
        return self

    def __str__(self) -> str:
        """String representation of the exception including context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class TransientError(FormulaError):
    """Errors caused by temporary conditions such as network outages.

    Evaluations are never retried automatically; the caller may re-run
    the whole evaluation once the condition clears.
    """
    pass


class UserError(FormulaError):
    """Errors caused by user input or the host not matching a formula.

    These should not be re-run without changing the request or the host.
    """
    pass


class SystemError(FormulaError):
    """Errors due to system-level issues.

    Build failures, broken toolchains, file system errors and failed
    smoke tests all land here.
    """
    pass


## Specific Exceptions ##

class FetchUnavailable(TransientError):
    """The source archive or head repository could not be retrieved."""
    def __init__(
        self,
        message: str | None = None,
        url: str | None = None,
        status: int | None = None,
        error: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise FetchUnavailable with detailed context.

        Args:
            message: Optional custom error message.
            url: The URL that was requested.
            status: HTTP status or command exit code, if any.
            error: Underlying error text.
            context: Additional context information.
        """
        ctx = context or {}
        if url:
            ctx["url"] = url
        if status is not None:
            ctx["status"] = status
        if error:
            ctx["error"] = error

        if message is None:
            message = f"Could not fetch {url or 'source'}"

        super().__init__(message, context=ctx)


class IntegrityMismatch(SystemError):
    """Fetched bytes do not hash to the declared digest.

    Fatal: the untrusted bytes are never extracted or built.
    """
    def __init__(
        self,
        message: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
        url: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise IntegrityMismatch with detailed context.

        Args:
            message: Optional custom error message.
            expected: The declared sha256 digest.
            actual: The sha256 digest of the fetched bytes.
            url: The source URL.
            context: Additional context information.
        """
        ctx = context or {}
        if expected is not None:
            ctx["expected"] = expected
        if actual is not None:
            ctx["actual"] = actual
        if url:
            ctx["url"] = url

        if message is None:
            message = "SHA256 mismatch"

        super().__init__(message, context=ctx)


class UnsupportedPlatform(UserError):
    """The host matches none of the release's platform branches."""
    def __init__(
        self,
        message: str | None = None,
        host: str | None = None,
        supported: list[str] | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise UnsupportedPlatform with detailed context.

        Args:
            message: Optional custom error message.
            host: The detected host platform.
            supported: Platforms the release declares.
            context: Additional context information.
        """
        ctx = context or {}
        if host:
            ctx["host"] = host
        if supported is not None:
            ctx["supported"] = ", ".join(supported) or "none"

        if message is None:
            message = f"Platform '{host or 'unknown'}' is not supported"

        super().__init__(message, context=ctx)


class DependencyMissing(UserError):
    """A build-time dependency is not available on the host."""
    def __init__(
        self,
        message: str | None = None,
        dependency: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if dependency:
            ctx["dependency"] = dependency

        if message is None:
            message = f"Build dependency '{dependency or 'unknown'}' not found on PATH"

        super().__init__(message, context=ctx)


class BuildStepFailed(SystemError):
    """One of configure, build or install exited non-zero.

    The remaining steps are not run and nothing installed is considered valid.
    """
    def __init__(
        self,
        message: str | None = None,
        step: str | None = None,
        returncode: int | None = None,
        command: str | None = None,
        output: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise BuildStepFailed with detailed context.

        Args:
            message: Optional custom error message.
            step: The failing step name.
            returncode: The exit status of the step's command.
            command: The command line that was executed.
            output: Tail of the command's output.
            context: Additional context information.
        """
        ctx = context or {}
        if step:
            ctx["step"] = step
        if returncode is not None:
            ctx["returncode"] = returncode
        if command:
            ctx["command"] = command
        if output:
            ctx["output"] = output

        if message is None:
            message = f"Build step '{step or 'unknown'}' failed with exit code {returncode}"

        super().__init__(message, context=ctx)

    @property
    def step(self) -> str | None:
        return self.context.get("step")

    @property
    def returncode(self) -> int | None:
        return self.context.get("returncode")


class VerificationFailed(SystemError):
    """The installed artifact failed its smoke test.

    The artifact exists on disk but is not certified usable.
    """
    def __init__(
        self,
        message: str | None = None,
        stage: str | None = None,
        returncode: int | None = None,
        missing: str | None = None,
        output: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise VerificationFailed with detailed context.

        Args:
            message: Optional custom error message.
            stage: "compile", "run" or "cli".
            returncode: Exit status of the failing command, if any.
            missing: Expected substring absent from captured output.
            output: Captured output of the failing command.
            context: Additional context information.
        """
        ctx = context or {}
        if stage:
            ctx["stage"] = stage
        if returncode is not None:
            ctx["returncode"] = returncode
        if missing:
            ctx["missing"] = missing
        if output:
            ctx["output"] = output

        if message is None:
            if missing:
                message = f"Verification '{stage}' output lacks '{missing}'"
            else:
                message = f"Verification '{stage or 'unknown'}' failed with exit code {returncode}"

        super().__init__(message, context=ctx)


class FormulaNotFoundError(UserError):
    """Requested formula is not in the repository."""
    def __init__(
        self,
        message: str | None = None,
        formula: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if formula:
            ctx["formula"] = formula

        if message is None:
            message = f"Formula '{formula or 'unknown'}' not found"

        super().__init__(message, context=ctx)


class ReleaseNotFoundError(UserError):
    """Requested version is not a release of the formula."""
    def __init__(
        self,
        message: str | None = None,
        formula: str | None = None,
        version: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if formula:
            ctx["formula"] = formula
        if version:
            ctx["version"] = version

        if message is None:
            message = f"Formula '{formula or 'unknown'}' has no release '{version or 'unknown'}'"

        super().__init__(message, context=ctx)


class CacheError(SystemError):
    """Errors related to archive cache access.

    Typically indicates:
        - File system permission issues
        - Disk space exhaustion
        - Read-only file system
    """
    def __init__(
        self,
        message: str | None = None,
        key: str | None = None,
        path: str | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if key:
            ctx["key"] = key
        if path:
            ctx["path"] = path
        if operation:
            ctx["operation"] = operation

        if message is None:
            op_str = f"{operation} " if operation else ""
            message = f"Cache {op_str}operation failed"

        super().__init__(message, context=ctx)


# CLI Error Message Templates

ERROR_TEMPLATES = {
    IntegrityMismatch: (
        "❌ Integrity mismatch for {url}\n"
        "   Expected: {expected}\n"
        "   Actual:   {actual}"
    ),
    FetchUnavailable: (
        "⚠️ Could not fetch {url}\n"
        "   Error: {error}"
    ),
    UnsupportedPlatform: (
        "❌ {message}\n"
        "   Supported: {supported}"
    ),
    BuildStepFailed: (
        "⚠️ Build step failed: {step}\n"
        "   Command: {command}\n"
        "   Exit Code: {returncode}"
    ),
    VerificationFailed: (
        "⚠️ Installed but not verified: {message}\n"
        "   Stage: {stage}"
    ),
    DependencyMissing: (
        "❌ {message}\n"
        "   Install '{dependency}' and try again"
    ),
    FormulaNotFoundError: (
        "❌ Formula Not Found: {formula}\n"
        "   Suggestion: Try 'formulary list' to see available formulas"
    ),
    CacheError: (
        "⚠️ Cache error: {message}\n"
        "   Location: {path}\n"
        "   Fix: Check file permissions or clear cache with 'formulary cache-clear'"
    ),
    TransientError: (
        "⚠️ Temporary failure: {message}\n"
        "   This may resolve itself - try again in a moment"
    ),
    UserError: (
        "❌ {message}"
    ),
    SystemError: (
        "⚠️ System error: {message}\n"
        "   Please check your toolchain and try again"
    ),
    FormulaError: (
        "❌ {message}"
    ),
}


def format_error_message(error: FormulaError) -> str:
    """Formats an error message for CLI display based on the error type.

    Args:
        error: The FormulaError instance to format.

    Returns:
        A formatted string message for CLI display.
    """
    template = ERROR_TEMPLATES.get(type(error), ERROR_TEMPLATES[FormulaError])
    try:
        return template.format(message=error.message, **getattr(error, "context", {}))
    except KeyError:
        return f"❌ {error}"
