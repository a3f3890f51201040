"""
HTTP client for Confluent-compatible schema registries.

Implements the RegistryClient protocol over the registry REST API:
- GET  /subjects/{subject}/versions/latest
- GET  /subjects/{subject}/versions/{version}
- POST /subjects/{subject}/versions    (register, returns the id)
- POST /subjects/{subject}             (lookup, returns the version)

Invariants:
    - One pooled httpx.AsyncClient per instance
    - 404 -> NotFoundError, 401/403 -> RegistryAuthError
    - Other 4xx (except 408/429) -> RegistrationRejectedError on POST,
      RegistryRequestError on GET
    - 408/429/5xx and transport errors -> RegistryTransientError
    - A 2xx body that is not JSON -> RegistryRequestError
    - After a transient failure the next call goes to the next URL

How to change safely:
    - Test status mapping with httpx.MockTransport (test_http_client.py)
    - Never log credentials; auth is handled by httpx
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    ConfigError,
    KsrtError,
    NotFoundError,
    RegistrationRejectedError,
    RegistryAuthError,
    RegistryRequestError,
    RegistryTransientError,
)
from ..schema.types import ReferenceDescriptor, SchemaType
from .base import RegisteredSchema

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/vnd.schemaregistry.v1+json"

_TRANSIENT_STATUS = {408, 429}
_AUTH_STATUS = {401, 403}


class SchemaReferenceModel(BaseModel):
    """Wire form of a schema reference."""

    name: str
    subject: str
    version: int


class RegisterSchemaRequest(BaseModel):
    """Body for register and lookup calls."""

    model_config = ConfigDict(populate_by_name=True)

    schema_text: str = Field(alias="schema")
    schema_type: Optional[str] = Field(default=None, alias="schemaType")
    references: List[SchemaReferenceModel] = Field(default_factory=list)


class RegisterSchemaResponse(BaseModel):
    """Response of POST /subjects/{subject}/versions."""

    id: int
    version: Optional[int] = None


class RegisteredSchemaModel(BaseModel):
    """Response of version lookups."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    version: int
    id: int
    schema_text: str = Field(alias="schema")
    schema_type: Optional[str] = Field(default=None, alias="schemaType")
    references: List[SchemaReferenceModel] = Field(default_factory=list)

    def to_registered(self) -> RegisteredSchema:
        return RegisteredSchema(
            subject=self.subject,
            version=self.version,
            schema_id=self.id,
            schema_type=SchemaType.from_str(self.schema_type or "avro"),
            content=self.schema_text,
            references=tuple(
                ReferenceDescriptor(name=r.name, subject=r.subject, version=r.version)
                for r in self.references
            ),
        )


class ErrorResponseModel(BaseModel):
    """Registry error body."""

    error_code: Optional[int] = None
    message: str = ""


class HttpRegistryClient:
    """Schema registry client over HTTP(S).

    Attributes:
        urls: Registry base URLs, tried in rotation on transient failures

    Example:
        >>> registry = HttpRegistryClient(["http://localhost:8081"])
        >>> schema = await registry.get_latest_version("orders-value")
        >>> await registry.close()
    """

    def __init__(
        self,
        urls: Sequence[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            urls: One or more registry base URLs
            username: Basic auth user (optional)
            password: Basic auth password (optional)
            timeout_seconds: Transport-level timeout per request
            transport: Custom httpx transport (tests)

        Raises:
            ConfigError: If no URL is given
        """
        self.urls: Tuple[str, ...] = tuple(url.rstrip("/") for url in urls if url)
        if not self.urls:
            raise ConfigError("At least one schema registry URL is required")

        self._current = 0
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            auth=auth,
            timeout=timeout_seconds,
            headers={"Accept": CONTENT_TYPE, "Content-Type": CONTENT_TYPE},
            transport=transport,
        )

    @property
    def current_url(self) -> str:
        """Base URL the next request goes to."""
        return self.urls[self._current]

    async def __aenter__(self) -> HttpRegistryClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close pooled connections."""
        await self._client.aclose()

    async def get_latest_version(self, subject: str) -> RegisteredSchema:
        data = await self._request("GET", f"/subjects/{_quote(subject)}/versions/latest", subject)
        return _parse_registered(data, subject)

    async def get_by_version(self, subject: str, version: int) -> RegisteredSchema:
        data = await self._request(
            "GET", f"/subjects/{_quote(subject)}/versions/{int(version)}", subject, version=version
        )
        return _parse_registered(data, subject)

    async def register(
        self,
        subject: str,
        content: str,
        schema_type: SchemaType,
        references: Sequence[ReferenceDescriptor] = (),
    ) -> Tuple[int, int]:
        body = RegisterSchemaRequest(
            schema_text=content,
            schema_type=None if schema_type is SchemaType.AVRO else schema_type.registry_name,
            references=[SchemaReferenceModel(**ref.to_dict()) for ref in references],
        ).model_dump(by_alias=True, exclude_none=True)

        data = await self._request("POST", f"/subjects/{_quote(subject)}/versions", subject, json=body)
        try:
            registered = RegisterSchemaResponse.model_validate(data)
        except ValidationError as e:
            raise KsrtError(f"Unexpected register response for '{subject}': {e}") from e

        if registered.version is not None:
            return registered.version, registered.id

        # Older registries return only the id; look the version up.
        data = await self._request("POST", f"/subjects/{_quote(subject)}", subject, json=body)
        found = _parse_registered(data, subject)
        return found.version, found.schema_id

    async def _request(
        self,
        method: str,
        path: str,
        subject: str,
        json: Any = None,
        version: Optional[int] = None,
    ) -> Any:
        url = f"{self.current_url}{path}"
        shown = redact_url(url)
        logger.debug(f"Registry request {method} {shown}")

        try:
            response = await self._client.request(method, url, json=json)
        except httpx.TimeoutException as e:
            self._rotate()
            raise RegistryTransientError(f"{method} {shown} timed out", shown) from e
        except httpx.TransportError as e:
            self._rotate()
            raise RegistryTransientError(f"{method} {shown} failed: {e}", shown) from e

        status = response.status_code
        if status < 400:
            try:
                return response.json()
            except ValueError as e:
                raise RegistryRequestError(
                    f"{method} {shown} returned {status} with a non-JSON body: {e}",
                    subject=subject,
                    status_code=status,
                ) from e

        error = _parse_error(response)

        if status in _TRANSIENT_STATUS or status >= 500:
            self._rotate()
            raise RegistryTransientError(f"{method} {shown} returned {status}: {error.message}", shown)

        if status in _AUTH_STATUS:
            raise RegistryAuthError(
                f"Registry refused {method} {shown} ({status}, error_code={error.error_code}): "
                f"{error.message}; check the registry credentials",
                subject=subject,
                status_code=status,
                error_code=error.error_code,
            )

        if status == 404:
            if version is not None:
                raise NotFoundError(
                    f"Subject '{subject}' version {version} not found: {error.message}",
                    resource_type="version",
                    resource_id=f"{subject}@{version}",
                )
            raise NotFoundError(
                f"Subject '{subject}' not found: {error.message}",
                resource_type="subject",
                resource_id=subject,
            )

        if method != "POST":
            raise RegistryRequestError(
                f"Registry request {method} {shown} failed "
                f"({status}, error_code={error.error_code}): {error.message}",
                subject=subject,
                status_code=status,
                error_code=error.error_code,
            )

        raise RegistrationRejectedError(
            f"Registry rejected schema for subject '{subject}' "
            f"({status}, error_code={error.error_code}): {error.message}",
            subject=subject,
            status_code=status,
            error_code=error.error_code,
        )

    def _rotate(self) -> None:
        if len(self.urls) > 1:
            self._current = (self._current + 1) % len(self.urls)
            logger.info(f"Switching schema registry URL to {redact_url(self.current_url)}")


def _quote(subject: str) -> str:
    return quote(subject, safe="")


def _parse_registered(data: Any, subject: str) -> RegisteredSchema:
    try:
        return RegisteredSchemaModel.model_validate(data).to_registered()
    except (ValidationError, ValueError) as e:
        raise KsrtError(f"Unexpected registry response for '{subject}': {e}") from e


def _parse_error(response: httpx.Response) -> ErrorResponseModel:
    try:
        return ErrorResponseModel.model_validate(response.json())
    except (ValueError, ValidationError):
        return ErrorResponseModel(message=response.text)


def redact_url(url: str) -> str:
    """Drop `user:password@` from a URL so it can be logged."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rpartition("@")[2]
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))
