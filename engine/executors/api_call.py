"""
apiCall executor.

Issues one HTTP request with interpolated method/url/headers/body and maps
fields of the JSON response into variables. Timeouts, transport errors and
non-2xx responses fail the node.
"""

import logging
import re
from typing import Any, Optional

import httpx

from engine.errors import NodeExecutionError
from engine.executors.base import NodeContext, NodeOutcome, executor
from engine.node_config import ApiCallConfig
from engine.types import Node
from engine.variables import interpolate

logger = logging.getLogger(__name__)

_PATH_TOKEN = re.compile(r"[^.\[\]]+")


def extract_path(data: Any, path: Optional[str]) -> Any:
    """
    Read a value out of a decoded JSON document.

    Accepts "a.b.c", "items[0].name", "items.0.name" and a leading "$." .
    Missing segments yield None. An empty path returns the whole document.
    """
    if not path:
        return data
    path = path.strip()
    if path.startswith("$"):
        path = path[1:].lstrip(".")

    current = data
    for token in _PATH_TOKEN.findall(path):
        if isinstance(current, dict):
            current = current.get(token)
        elif isinstance(current, list) and token.lstrip("-").isdigit():
            index = int(token)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


@executor("apiCall")
async def api_call(node: Node, config: ApiCallConfig, ctx: NodeContext) -> NodeOutcome:
    method = (config.method or "GET").upper()
    url = interpolate(config.url, ctx.variables)
    if not url:
        raise NodeExecutionError("apiCall has no URL", node.id, node.type)

    headers = {key: interpolate(value, ctx.variables) for key, value in config.headers.items()}
    body = None
    if config.body and method != "GET":
        body = interpolate(config.body, ctx.variables)
        if not any(key.lower() == "content-type" for key in headers):
            headers["Content-Type"] = "application/json"

    timeout_s = max(config.timeout_ms, 1) / 1000.0

    try:
        async with httpx.AsyncClient(
            transport=ctx.settings.http_transport, timeout=timeout_s
        ) as client:
            response = await client.request(method, url, headers=headers, content=body)
    except httpx.TimeoutException:
        raise NodeExecutionError(
            f"API call to {url} timed out after {config.timeout_ms}ms", node.id, node.type
        )
    except httpx.HTTPError as e:
        raise NodeExecutionError(f"API call to {url} failed: {e}", node.id, node.type)

    if not response.is_success:
        raise NodeExecutionError(
            f"API call to {url} returned {response.status_code}", node.id, node.type
        )

    try:
        data = response.json()
    except ValueError:
        data = {}

    deltas = {"api_status": response.status_code, "api_success": True}
    for mapping in config.response_mapping:
        deltas[mapping.variable_name] = extract_path(data, mapping.path)

    logger.info(
        f"API call {method} {url} -> {response.status_code}",
        extra={"execution_id": ctx.execution.id, "node_id": node.id},
    )
    return NodeOutcome(
        deltas=deltas,
        log={"method": method, "url": url, "status": response.status_code},
    )
