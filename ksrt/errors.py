"""
Error types for KSRT.

This module defines all exception types raised by the tool:
- KsrtError: Base exception
- NotFoundError: Source file or registry entity missing
- ParseError / CanonicalizationError: Malformed input schema
- UnresolvedImportError: Dangling dependency
- CyclicDependencyError / CyclicReferenceError: Graph invariant violation
- RegistrationRejectedError: Registry refused a schema
- RegistryRequestError / RegistryAuthError: Failed lookup, bad response body
  or refused credentials
- RegistryUnavailableError: Transport failure after retries

Invariants:
    - All errors inherit from KsrtError
    - Errors carry the offending identifiers in `details`
    - Only RegistryTransientError is ever retried
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class KsrtError(Exception):
    """Base exception for all KSRT errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "KSRT_ERROR"
        self.details = details or {}


class ConfigError(KsrtError):
    """Invalid configuration or command-line arguments."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIG_ERROR")


class NotFoundError(KsrtError):
    """Resource not found.

    Raised when:
    - A schema source file cannot be read
    - A registry subject has no versions
    - A registry subject has no such version
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ParseError(KsrtError):
    """Import declarations could not be extracted from a schema source."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        line: Optional[int] = None,
        code: str = "PARSE_ERROR",
    ) -> None:
        super().__init__(message, code=code, details={"path": path, "line": line})
        self.path = path
        self.line = line


class CanonicalizationError(ParseError):
    """Schema text is not well-formed enough to canonicalize."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(message, path=path, line=line, code="CANONICALIZATION_ERROR")


class UnresolvedImportError(KsrtError):
    """A declared import could not be located.

    Attributes:
        import_name: The import as written in the declaring file
        declared_in: Logical path of the file declaring the import
    """

    def __init__(self, import_name: str, declared_in: str) -> None:
        super().__init__(
            f"Cannot resolve import '{import_name}' declared in '{declared_in}'",
            code="UNRESOLVED_IMPORT",
            details={"import": import_name, "declared_in": declared_in},
        )
        self.import_name = import_name
        self.declared_in = declared_in


class CyclicDependencyError(KsrtError):
    """Local schema imports form a cycle.

    Attributes:
        cycle: Logical paths of the cycle, returning to its start
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle: List[str] = list(cycle)
        super().__init__(
            f"Cyclic import dependency: {' -> '.join(self.cycle)}",
            code="CYCLIC_DEPENDENCY",
            details={"cycle": self.cycle},
        )


class CyclicReferenceError(KsrtError):
    """Registry references form a cycle.

    Attributes:
        cycle: (subject, version) pairs of the cycle, returning to its start
    """

    def __init__(self, cycle: Sequence[tuple]) -> None:
        self.cycle: List[tuple] = list(cycle)
        rendered = " -> ".join(f"{subject}@{version}" for subject, version in self.cycle)
        super().__init__(
            f"Cyclic schema reference: {rendered}",
            code="CYCLIC_REFERENCE",
            details={"cycle": self.cycle},
        )


class RegistrationRejectedError(KsrtError):
    """The registry refused to register a schema.

    Raised when:
    - The schema is incompatible under the subject's compatibility policy
    - The schema or one of its references is invalid
    """

    def __init__(
        self,
        message: str,
        subject: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="REGISTRATION_REJECTED",
            details={
                "subject": subject,
                "status_code": status_code,
                "error_code": error_code,
            },
        )
        self.subject = subject
        self.status_code = status_code
        self.error_code = error_code


class RegistryRequestError(KsrtError):
    """The registry answered a request with an error or an unusable body.

    Raised when:
    - A lookup fails with a client error other than 404
    - A successful response does not contain JSON
    """

    def __init__(
        self,
        message: str,
        subject: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        code: str = "REGISTRY_REQUEST_FAILED",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={
                "subject": subject,
                "status_code": status_code,
                "error_code": error_code,
            },
        )
        self.subject = subject
        self.status_code = status_code
        self.error_code = error_code


class RegistryAuthError(RegistryRequestError):
    """The registry refused the credentials (401) or the operation (403)."""

    def __init__(
        self,
        message: str,
        subject: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, subject, status_code, error_code, code="REGISTRY_AUTH_FAILED")


class RegistryTransientError(KsrtError):
    """A single registry call failed in a way worth retrying."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, code="REGISTRY_TRANSIENT", details={"url": url})
        self.url = url


class RegistryUnavailableError(KsrtError):
    """Registry could not be reached after all retries.

    Attributes:
        operation: Description of the failed registry call
        attempts: Number of attempts made
    """

    def __init__(self, operation: str, attempts: int, cause: Optional[str] = None) -> None:
        message = f"Registry unavailable for {operation} after {attempts} attempt(s)"
        if cause:
            message += f": {cause}"
        super().__init__(
            message,
            code="REGISTRY_UNAVAILABLE",
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts


class PublishCancelledError(KsrtError):
    """Publication stopped between nodes on request.

    Attributes:
        completed: Logical path -> PublishRecord for nodes already handled
    """

    def __init__(self, completed: Dict[str, Any]) -> None:
        super().__init__(
            f"Publication cancelled after {len(completed)} schema(s)",
            code="PUBLISH_CANCELLED",
            details={"completed": sorted(completed)},
        )
        self.completed = dict(completed)


class GraphFrozenError(KsrtError):
    """Raised when attempting to modify a frozen dependency graph."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="GRAPH_FROZEN")
