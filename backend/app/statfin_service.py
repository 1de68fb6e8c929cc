from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from . import config as settings

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
USER_AGENT = "municipality-stats/0.1"

logger = structlog.get_logger()


@dataclass(frozen=True)
class ApiConfig:
    timeout: float = 20.0
    retries: int = 3


def default_api_config() -> ApiConfig:
    return ApiConfig(
        timeout=settings.STATFIN_TIMEOUT_SECONDS,
        retries=settings.STATFIN_RETRIES,
    )


class UpstreamAPIError(RuntimeError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message


def _backoff_seconds(attempt: int) -> float:
    return min(8.0, 0.5 * (2**attempt))


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


async def _send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    body: dict[str, Any] | None,
    stage: str,
    config: ApiConfig,
) -> dict[str, Any]:
    last_error: Exception | None = None
    headers = {"User-Agent": USER_AGENT}
    for attempt in range(config.retries + 1):
        try:
            response = await client.request(
                method, url, json=body, timeout=config.timeout, headers=headers
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_error = exc
            if attempt < config.retries:
                logger.warning("upstream_retry", stage=stage, attempt=attempt, error=str(exc))
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise UpstreamAPIError(stage, f"Network error after retries: {exc!s}") from exc

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            last_error = UpstreamAPIError(
                stage, f"HTTP {status}: {_short_error_text(response.text)}"
            )
            if attempt < config.retries:
                logger.warning("upstream_retry", stage=stage, attempt=attempt, status=status)
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise last_error

        if 400 <= status < 500:
            raise UpstreamAPIError(stage, f"HTTP {status}: {_short_error_text(response.text)}")

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamAPIError(
                stage, f"Invalid JSON in upstream response (HTTP {status})"
            ) from exc

    if last_error is not None:
        raise UpstreamAPIError(stage, f"Failed request after retries: {last_error!s}")
    raise UpstreamAPIError(stage, "Failed request after retries.")


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    stage: str,
    config: ApiConfig,
) -> dict[str, Any]:
    """GET a table's metadata (or any plain JSON document)."""
    return await _send_json(client, "GET", url, body=None, stage=stage, config=config)


async def post_query(
    client: httpx.AsyncClient,
    url: str,
    *,
    query: dict[str, Any],
    stage: str,
    config: ApiConfig,
) -> dict[str, Any]:
    """POST a PxWeb query body and return the decoded response."""
    return await _send_json(client, "POST", url, body=query, stage=stage, config=config)


def extract_values(payload: dict[str, Any], stage: str) -> list[float | None]:
    """Pull the flat ``value`` array out of a json-stat2 response."""
    values = payload.get("value")
    if not isinstance(values, list):
        raise UpstreamAPIError(stage, "Response has no 'value' array.")
    return values


def extract_variable(payload: dict[str, Any], position: int, stage: str) -> tuple[list[str], list[str]]:
    """Return ``(values, valueTexts)`` of one variable in a table metadata response."""
    variables = payload.get("variables")
    if not isinstance(variables, list) or len(variables) <= position:
        raise UpstreamAPIError(stage, f"Metadata has no variable at position {position}.")
    variable = variables[position] or {}
    codes = variable.get("values")
    texts = variable.get("valueTexts")
    if not isinstance(codes, list) or not isinstance(texts, list) or len(codes) != len(texts):
        raise UpstreamAPIError(stage, f"Variable {position} has mismatched values/valueTexts.")
    return [str(code) for code in codes], [str(text) for text in texts]
