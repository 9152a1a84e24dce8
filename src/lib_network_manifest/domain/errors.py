"""Domain-level exception hierarchy.

Purpose
-------
Expose the stable error taxonomy shared by the compiler phases, the snapshot
lifecycle, adapters, and the CLI. The hierarchy lives in the domain layer so
outer layers may depend on it without the domain depending on them.

Contents
--------
* :class:`NetworkDeploymentError` – umbrella base class.
* :class:`ConfigurationError` – conflicting or malformed fragment merges.
* :class:`InvalidFormat` / :class:`NotFound` – network source loading problems.
* :class:`MissingPropertyError` – a target lacks the attribute used as its address.
* :class:`EvaluationError` – a target's fragment set failed to evaluate.
* :class:`RemoteOperationError` – transport failure talking to a target (retryable).
* :class:`StateConsistencyError` – lifecycle request that can never succeed (fatal).
* :class:`LifecycleError` – aggregate raised after a fan-out with failed targets.

System Role
-----------
Compilation-phase errors abort the whole compilation. Lifecycle-phase errors are
scoped per target and collected into a report; callers catch
:class:`NetworkDeploymentError` to handle every library failure uniformly.
"""

from __future__ import annotations

from typing import Any


class NetworkDeploymentError(Exception):
    """Base type for all exceptions emitted by ``lib_network_manifest``.

    Why
    ----
    Provide a single catch-all type for consumers that do not need fine-grained
    handling.
    """


class ConfigurationError(NetworkDeploymentError):
    """Raised when fragments or settings conflict or are malformed.

    Typical Sources
    ---------------
    Reserved network settings assigned different scalar values by two sources,
    equal-priority option assignments that disagree, undeclared options while
    completeness checks are on, and cyclic references between targets.
    """


class InvalidFormat(ConfigurationError):
    """Raised when a network source cannot be parsed into a mapping."""


class NotFound(ConfigurationError):
    """Raised when a network source file does not exist."""


class MissingPropertyError(NetworkDeploymentError, KeyError):
    """A target lacks the infrastructure attribute needed to resolve its address.

    Attributes
    ----------
    attribute:
        Name of the attribute that was looked up.
    """

    def __init__(self, attribute: str, message: str | None = None) -> None:
        self.attribute = attribute
        super().__init__(message or f"Infrastructure attribute not found: {attribute}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0])


class EvaluationError(NetworkDeploymentError):
    """A target's fragment list failed to evaluate.

    Attributes
    ----------
    target:
        Name of the target whose configuration could not be evaluated.
    cause:
        The underlying exception.
    """

    def __init__(self, target: str, cause: BaseException) -> None:
        self.target = target
        self.cause = cause
        super().__init__(f"Failed to evaluate configuration of target {target}: {cause}")


class RemoteOperationError(NetworkDeploymentError):
    """Transport or authentication failure while talking to a target.

    Lifecycle operations retry this error with backoff; it is the only
    retryable failure in the taxonomy.
    """

    retryable = True

    def __init__(self, target: str, operation: str, message: str) -> None:
        self.target = target
        self.operation = operation
        super().__init__(f"{operation} on {target} failed: {message}")


class StateConsistencyError(NetworkDeploymentError):
    """A lifecycle request that cannot succeed, e.g. restoring without a snapshot.

    Never retried.
    """

    retryable = False

    def __init__(self, target: str, message: str) -> None:
        self.target = target
        super().__init__(f"{target}: {message}")


class LifecycleError(NetworkDeploymentError):
    """One or more targets failed during a lifecycle operation.

    Raised only after every dispatched target finished, so operations on healthy
    targets are never cut short. ``report`` holds the per-target outcomes.
    """

    def __init__(self, operation: str, report: Any) -> None:
        self.operation = operation
        self.report = report
        failed = ", ".join(sorted(report.failures))
        super().__init__(f"{operation} failed on: {failed}")
