"""
Walvault error taxonomy.

Every error carries a machine-readable code, a recoverable flag and a details
dict (blob id, failed check, counts/epochs) so an operator can tell
"retry me" apart from "this is corrupted" without reading logs.
"""

from typing import Any, Dict, List, Optional


class WalvaultError(Exception):
    """Base class for all walvault errors."""

    code = "WALVAULT_ERROR"
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


class ContentMismatch(WalvaultError):
    """Fetched bytes do not match the expected content."""

    code = "CONTENT_MISMATCH"

    def __init__(
        self,
        blob_id: str,
        algorithms: List[str],
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        expected_size: Optional[int] = None,
        actual_size: Optional[int] = None,
    ):
        if expected_size is not None and actual_size is not None and expected_size != actual_size:
            message = (
                f"Size mismatch for blob {blob_id}: "
                f"expected {expected_size} bytes, got {actual_size} bytes"
            )
        else:
            message = f"Checksum mismatch for blob {blob_id} ({', '.join(algorithms)})"
        super().__init__(
            message,
            details={
                "blob_id": blob_id,
                "check": "checksum",
                "algorithms": algorithms,
                "expected": expected,
                "actual": actual,
                "expected_size": expected_size,
                "actual_size": actual_size,
            },
        )
        self.blob_id = blob_id
        self.algorithms = algorithms


class CertificationRequired(WalvaultError):
    """Certification was required but the blob has no certified epoch."""

    code = "CERTIFICATION_REQUIRED"

    def __init__(self, blob_id: str, registered_epoch: Optional[int] = None):
        message = f"Blob {blob_id} certification required but not found"
        if registered_epoch is not None:
            message += f" (registered at epoch {registered_epoch})"
        super().__init__(
            message,
            details={
                "blob_id": blob_id,
                "check": "certification",
                "registered_epoch": registered_epoch,
            },
        )
        self.blob_id = blob_id
        self.registered_epoch = registered_epoch


class CertificationTimeout(WalvaultError):
    """Blob was not certified before the wait timeout elapsed."""

    code = "CERTIFICATION_TIMEOUT"
    recoverable = True

    def __init__(
        self,
        blob_id: str,
        timeout: float,
        last_state: Optional[str] = None,
        registered_epoch: Optional[int] = None,
        polls: int = 0,
    ):
        super().__init__(
            f"Timeout waiting for certification of blob {blob_id} after {timeout}s",
            details={
                "blob_id": blob_id,
                "check": "certification",
                "timeout": timeout,
                "last_state": last_state,
                "registered_epoch": registered_epoch,
                "polls": polls,
            },
        )
        self.blob_id = blob_id
        self.timeout = timeout
        self.last_state = last_state
        self.polls = polls


class AttributeMismatch(WalvaultError):
    """Stored attributes differ from the expected ones."""

    code = "ATTRIBUTE_MISMATCH"

    def __init__(self, blob_id: str, mismatches: List[Dict[str, Any]]):
        lines = "\n".join(
            f"  {m['key']}: expected \"{m['expected']}\", got \"{m['actual']}\""
            for m in mismatches
        )
        super().__init__(
            f"Metadata verification failed for blob {blob_id}:\n{lines}",
            details={"blob_id": blob_id, "check": "attributes", "mismatches": mismatches},
        )
        self.blob_id = blob_id
        self.mismatches = mismatches


class AvailabilityCheckFailed(WalvaultError):
    """Proof of availability or provider quorum required but not met."""

    code = "AVAILABILITY_CHECK_FAILED"
    recoverable = True

    def __init__(self, blob_id: str, poa_complete: bool, providers: int, min_providers: int):
        reasons = []
        if not poa_complete:
            reasons.append("PoA incomplete")
        if providers < min_providers:
            reasons.append(f"insufficient providers ({providers}/{min_providers})")
        super().__init__(
            f"Blob {blob_id} availability check failed: {', '.join(reasons)}",
            details={
                "blob_id": blob_id,
                "check": "availability",
                "poa_complete": poa_complete,
                "providers": providers,
                "min_providers": min_providers,
            },
        )
        self.blob_id = blob_id


class AvailabilityMonitoringFailed(WalvaultError):
    """Retry budget exhausted while monitoring blob availability."""

    code = "MONITORING_FAILED"

    def __init__(self, blob_id: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(
            f"Blob availability monitoring failed after {attempts} attempts: {last_error}",
            details={
                "blob_id": blob_id,
                "check": "availability",
                "attempts": attempts,
                "last_error": last_error,
            },
        )
        self.blob_id = blob_id
        self.attempts = attempts
        self.last_error = last_error


class MonitoringInProgress(WalvaultError):
    """A monitoring loop for this blob is already running."""

    code = "MONITORING_IN_PROGRESS"
    recoverable = True

    def __init__(self, blob_id: str):
        super().__init__(
            f"Availability monitoring already in progress for blob {blob_id}",
            details={"blob_id": blob_id},
        )
        self.blob_id = blob_id


class RenewalTransactionFailed(WalvaultError):
    """Storage extension transaction failed; retried on the next scan."""

    code = "RENEWAL_FAILED"
    recoverable = True

    def __init__(self, blob_id: str, additional_epochs: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to renew blob {blob_id} for {additional_epochs} epochs: {cause}",
            details={
                "blob_id": blob_id,
                "check": "renewal",
                "additional_epochs": additional_epochs,
            },
            cause=cause,
        )
        self.blob_id = blob_id
        self.additional_epochs = additional_epochs


class NetworkError(WalvaultError):
    """Transport failure from a collaborator."""

    code = "NETWORK_ERROR"
    recoverable = True

    def __init__(self, message: str, operation: str, cause: Optional[BaseException] = None, **details):
        super().__init__(message, details={"operation": operation, **details}, cause=cause)
        self.operation = operation


class StorageError(WalvaultError):
    """Tracking store or storage network refused an operation."""

    code = "STORAGE_ERROR"

    def __init__(self, message: str, blob_id: Optional[str] = None, operation: Optional[str] = None, recoverable: bool = False):
        super().__init__(message, details={"blob_id": blob_id, "operation": operation})
        self.blob_id = blob_id
        self.recoverable = recoverable


class ValidationError(WalvaultError):
    """Invalid input or configuration."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message, details={"field": field, "value": value})
        self.field = field
