"""HTTP client for the external workflow engine's REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..constants import DEFAULT_ENGINE_TIMEOUT
from ..contracts import EngineHealth, ExecutionSample, WorkflowDefinition, WorkflowState
from ..errors import (
    EngineError,
    EngineRequestError,
    PermanentAuthError,
    TransientDeployError,
)
from .base import WorkflowEngine

logger = logging.getLogger(__name__)


def classify_response(response: httpx.Response, operation: str) -> Optional[EngineError]:
    """Map a non-2xx engine response onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return None
    message = f"{operation} failed with HTTP {status}: {response.text[:200]}"
    if status in (401, 403):
        return PermanentAuthError(message, operation=operation, status_code=status)
    if status == 429 or status >= 500:
        return TransientDeployError(message, operation=operation, status_code=status)
    return EngineRequestError(message, operation=operation, status_code=status)


class HttpWorkflowEngine(WorkflowEngine):
    """Talk to the engine over HTTP with a static API key header.

    Every response body is expected to be wrapped as ``{"data": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        api_key_header: str = "X-N8N-API-KEY",
        timeout: float = DEFAULT_ENGINE_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers[api_key_header] = api_key
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=timeout
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    async def _send(
        self, operation: str, method: str, path: str, **kwargs: Any
    ) -> httpx.Response:
        logger.debug(f"Engine request: {method} {path}")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientDeployError(
                f"{operation} timed out after {self.timeout}s", operation=operation
            ) from exc
        except httpx.TransportError as exc:
            raise TransientDeployError(
                f"{operation} could not reach the engine: {exc}", operation=operation
            ) from exc
        logger.debug(f"Engine response: {response.status_code} {path}")
        error = classify_response(response, operation)
        if error is not None:
            raise error
        return response

    @staticmethod
    def _data(response: httpx.Response, operation: str) -> Any:
        try:
            body = response.json()
        except ValueError as exc:
            raise EngineRequestError(
                f"{operation} returned a non-JSON body", operation=operation
            ) from exc
        if not isinstance(body, dict) or "data" not in body:
            raise EngineRequestError(
                f"{operation} returned an unwrapped body", operation=operation
            )
        return body["data"]

    async def _call(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(operation, method, path, **kwargs)
        return self._data(response, operation)

    # ------------------------------------------------------------------
    async def ping(self) -> EngineHealth:
        try:
            response = await self._send("ping", "GET", "/workflows")
            data = self._data(response, "ping")
        except EngineError as exc:
            logger.warning(f"Engine liveness probe failed: {exc}")
            return EngineHealth(
                connected=False,
                status="error",
                error=str(exc),
                status_code=exc.status_code,
            )
        return EngineHealth(
            connected=True,
            workflow_count=len(data) if isinstance(data, list) else 0,
            version=response.headers.get("x-n8n-version", "unknown"),
        )

    async def create_workflow(self, definition: WorkflowDefinition) -> WorkflowState:
        data = await self._call(
            "create_workflow", "POST", "/workflows", json=definition.to_payload()
        )
        return self._state(data, "create_workflow")

    async def get_workflow(self, workflow_id: str) -> WorkflowState:
        data = await self._call("get_workflow", "GET", f"/workflows/{workflow_id}")
        return self._state(data, "get_workflow")

    async def activate_workflow(self, workflow_id: str) -> None:
        await self._send("activate_workflow", "POST", f"/workflows/{workflow_id}/activate")

    async def deactivate_workflow(self, workflow_id: str) -> None:
        await self._send(
            "deactivate_workflow", "POST", f"/workflows/{workflow_id}/deactivate"
        )

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._send("delete_workflow", "DELETE", f"/workflows/{workflow_id}")

    async def execute_workflow(
        self, workflow_id: str, payload: Dict[str, Any]
    ) -> ExecutionSample:
        data = await self._call(
            "execute_workflow",
            "POST",
            f"/workflows/{workflow_id}/execute",
            json={"data": payload},
        )
        if isinstance(data, dict):
            data = {"workflowId": workflow_id, **data}
        return self._sample(data, "execute_workflow")

    async def get_execution(self, execution_id: str) -> ExecutionSample:
        data = await self._call("get_execution", "GET", f"/executions/{execution_id}")
        if isinstance(data, dict):
            data = {"id": execution_id, **data}
        return self._sample(data, "get_execution")

    async def list_executions(
        self, workflow_id: str, limit: int = 100
    ) -> List[ExecutionSample]:
        data = await self._call(
            "list_executions",
            "GET",
            "/executions",
            params={"workflowId": workflow_id, "limit": limit},
        )
        if not isinstance(data, list):
            raise EngineRequestError(
                "list_executions did not return a list", operation="list_executions"
            )
        samples = [self._sample(item, "list_executions") for item in data]
        return sorted(
            samples,
            key=lambda s: s.started_at.timestamp() if s.started_at else 0.0,
            reverse=True,
        )

    @staticmethod
    def _sample(data: Any, operation: str) -> ExecutionSample:
        try:
            return ExecutionSample.model_validate(data)
        except ValueError as exc:
            raise EngineRequestError(
                f"{operation} returned an unreadable execution", operation=operation
            ) from exc

    @staticmethod
    def _state(data: Any, operation: str) -> WorkflowState:
        try:
            return WorkflowState.model_validate(data)
        except ValueError as exc:
            raise EngineRequestError(
                f"{operation} returned an unreadable workflow", operation=operation
            ) from exc
