from __future__ import annotations

"""External service invocation for service-task nodes."""

import asyncio
import json
import logging
from typing import Any, Dict, Literal, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from rulesflow.errors import ServiceInvocationError

logger = logging.getLogger("rulesflow.services")

DEFAULT_TIMEOUT = 30.0

AuthType = Literal["none", "bearer", "basic", "apiKey"]

_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class AuthConfig(BaseModel):
    """Credentials applied to every call through an adapter."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: AuthType = "none"
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    header_name: str = "X-API-Key"
    api_key: Optional[str] = None


class AdapterConfig(BaseModel):
    """Connection settings for an external system."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    type: str = "rest"
    base_url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    @model_validator(mode="before")
    @classmethod
    def _unpack_stored_shape(cls, data: Any) -> Any:
        # Stored adapters keep connection, auth and headers as JSON blobs.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("config", "authConfig", "headers"):
            if isinstance(data.get(key), str):
                data[key] = json.loads(data[key] or "{}")
        config = data.pop("config", None) or {}
        if "baseUrl" not in data and "base_url" not in data:
            data["baseUrl"] = config.get("baseUrl") or config.get("url") or ""
        if "authConfig" in data:
            data.setdefault("auth", data.pop("authConfig") or {})
        return data

    def build_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Merge default, adapter, auth and per-call headers."""

        headers = {"Content-Type": "application/json", **self.headers}
        auth = self.auth
        if auth.type == "bearer" and auth.token:
            headers["Authorization"] = f"Bearer {auth.token}"
        elif auth.type == "apiKey" and auth.api_key:
            headers[auth.header_name] = auth.api_key
        headers.update(extra or {})
        return headers

    def basic_auth(self) -> Optional[httpx.BasicAuth]:
        if self.auth.type == "basic" and self.auth.username is not None:
            return httpx.BasicAuth(self.auth.username, self.auth.password or "")
        return None


class ServiceRequest(BaseModel):
    """One outbound call made on behalf of a service task."""

    adapter: AdapterConfig
    method: str = "POST"
    path: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def url(self) -> str:
        return self.adapter.base_url + self.path


class ServiceInvoker(Protocol):
    """Collaborator signature the workflow interpreter depends on."""

    async def invoke(self, request: ServiceRequest) -> Any: ...


class RestServiceInvoker:
    """Performs service calls over HTTP with a hard overall timeout."""

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    async def invoke(self, request: ServiceRequest) -> Any:
        """Send ``request`` and return the parsed JSON body."""

        try:
            response = await asyncio.wait_for(self._send(request), timeout=request.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ServiceInvocationError(
                f"Service call to {request.url} timed out after {request.timeout:g}s"
            ) from exc
        except httpx.RequestError as exc:
            raise ServiceInvocationError(f"Service call to {request.url} failed: {exc}") from exc

        if not response.is_success:
            raise ServiceInvocationError(
                f"Service call to {request.url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceInvocationError(
                f"Service call to {request.url} returned a non-JSON response",
                status_code=response.status_code,
            ) from exc

    async def _send(self, request: ServiceRequest) -> httpx.Response:
        method = request.method.upper()
        async with httpx.AsyncClient(timeout=request.timeout, transport=self._transport) as client:
            logger.debug("%s %s", method, request.url)
            return await client.request(
                method,
                request.url,
                headers=request.adapter.build_headers(request.headers),
                auth=request.adapter.basic_auth(),
                json=None if method in _BODYLESS_METHODS else request.body,
            )


__all__ = [
    "AdapterConfig",
    "AuthConfig",
    "DEFAULT_TIMEOUT",
    "RestServiceInvoker",
    "ServiceInvoker",
    "ServiceRequest",
]
