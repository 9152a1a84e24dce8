from __future__ import annotations

import pytest

from lib_network_manifest.application.lifecycle import LifecycleReport, TargetOutcome
from lib_network_manifest.domain.errors import (
    ConfigurationError,
    EvaluationError,
    InvalidFormat,
    LifecycleError,
    MissingPropertyError,
    NetworkDeploymentError,
    NotFound,
    RemoteOperationError,
    StateConsistencyError,
)


def test_error_hierarchy() -> None:
    assert issubclass(InvalidFormat, ConfigurationError)
    assert issubclass(NotFound, ConfigurationError)
    for exception in (
        ConfigurationError(""),
        MissingPropertyError("hostname"),
        EvaluationError("web1", ValueError("boom")),
        RemoteOperationError("web1", "capture", "timeout"),
        StateConsistencyError("web1", "no snapshot"),
    ):
        assert isinstance(exception, NetworkDeploymentError)


def test_missing_property_is_a_lookup_failure() -> None:
    with pytest.raises(KeyError):
        raise MissingPropertyError("sshTarget")
    error = MissingPropertyError("sshTarget")
    assert error.attribute == "sshTarget"
    assert str(error) == "Infrastructure attribute not found: sshTarget"


def test_evaluation_error_carries_target_and_cause() -> None:
    cause = ConfigurationError("conflicting option assignment")
    error = EvaluationError("web1", cause)
    assert error.target == "web1"
    assert error.cause is cause
    assert "web1" in str(error) and "conflicting option assignment" in str(error)


def test_only_transport_failures_are_retryable() -> None:
    assert RemoteOperationError.retryable is True
    assert StateConsistencyError.retryable is False


def test_lifecycle_error_lists_failed_targets() -> None:
    report = LifecycleReport("restore")
    report.record(TargetOutcome("web2", error=StateConsistencyError("web2", "no snapshot")))
    report.record(TargetOutcome("web1", result=[]))
    report.record(TargetOutcome("db1", error=RemoteOperationError("db1", "restore", "timeout")))
    error = LifecycleError("restore", report)
    assert str(error) == "restore failed on: db1, web2"
    assert error.report is report
