from __future__ import annotations  # HTTP gateway for the utterance renderer route

import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError

from config.routes import LlmRoute


logger = logging.getLogger(__name__)  # Module logger setup


_ROUTE_LOCKS: Dict[str, threading.Lock] = {}
_ROUTE_LOCKS_GUARD = threading.Lock()


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> "HttpResponse": ...


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class LlmGatewayError(RuntimeError):  # Base gateway error
    pass


class RenderedUtterance(BaseModel):  # Schema the renderer route must reply with
    text: str = Field(min_length=1)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    quality: Dict[str, float] = Field(default_factory=dict)


T = TypeVar("T", bound=BaseModel)


def _lock_for(cfg: LlmRoute) -> threading.Lock:
    key = cfg.name or f"{cfg.base_url}{cfg.endpoint}"
    with _ROUTE_LOCKS_GUARD:
        lock = _ROUTE_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _ROUTE_LOCKS[key] = lock
    return lock


def chat(
    messages: Sequence[Dict[str, str]],
    schema: Type[T],
    *,
    cfg: LlmRoute,
    client: Optional[HttpClient] = None,
    options: Optional[Dict[str, Any]] = None,
    sequential: bool = False,
) -> T:
    """Send ``messages`` to the route and validate the reply against ``schema``.

    Validation failures are retried up to ``cfg.max_retries`` times with a hint
    appended; transport and HTTP errors raise immediately.
    """

    if sequential:
        with _lock_for(cfg):
            return _execute(messages, schema, cfg, client, options)
    return _execute(messages, schema, cfg, client, options)


def _execute(
    messages: Sequence[Dict[str, str]],
    schema: Type[T],
    cfg: LlmRoute,
    client: Optional[HttpClient],
    options: Optional[Dict[str, Any]],
) -> T:
    base_messages = _schema_preamble(schema, cfg) + _normalize_messages(messages)
    attempts = cfg.max_retries + 1
    preview = _preview(base_messages)
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        attempt_messages = list(base_messages)
        if last_error is not None:
            attempt_messages.append({"role": "system", "content": _retry_hint(str(last_error), cfg.enforce_json)})
        logger.info(
            "Renderer request route=%s model=%s attempt=%d/%d preview=%s",
            cfg.name,
            cfg.model,
            attempt + 1,
            attempts,
            preview,
        )
        content = _send(cfg, _payload(cfg, attempt_messages, options), client)
        try:
            parsed = schema.model_validate_json(_strip_code_fences(content))
        except ValidationError as exc:
            logger.warning("Renderer output validation failed route=%s: %s", cfg.name, exc)
            last_error = exc
            continue
        logger.info("Renderer request done route=%s attempt=%d", cfg.name, attempt + 1)
        return parsed
    raise LlmGatewayError("Renderer output validation failed") from last_error


def _schema_preamble(schema: Type[BaseModel], cfg: LlmRoute) -> List[Dict[str, str]]:
    if not cfg.enforce_json:
        return []
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return [{"role": "system", "content": "Reply with a single JSON object matching this schema:\n" + schema_json}]


def _payload(cfg: LlmRoute, messages: List[Dict[str, str]], options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"model": cfg.model, "messages": messages}
    if cfg.temperature is not None:
        payload["temperature"] = cfg.temperature
    if cfg.response_format:
        payload["response_format"] = {"type": cfg.response_format}
    if options:
        payload.update(options)
    return payload


def _headers(cfg: LlmRoute) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if cfg.api_key_env:
        api_key = os.getenv(cfg.api_key_env)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
    headers.update(cfg.extra_headers)
    return headers


def _send(cfg: LlmRoute, payload: Dict[str, Any], client: Optional[HttpClient]) -> str:  # POST and extract content
    url = f"{cfg.base_url}{cfg.endpoint}"
    try:
        response, close_cb = _post(url, payload, _headers(cfg), cfg.timeout_s, client)
    except httpx.HTTPError as exc:
        logger.error("Renderer transport failure route=%s: %s", cfg.name, exc)
        raise LlmGatewayError("Renderer transport failed") from exc
    try:
        if response.status_code >= 400:
            logger.error("Renderer error status route=%s: %s", cfg.name, response.status_code)
            raise LlmGatewayError(f"Renderer returned status {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Invalid JSON payload from renderer route=%s: %s", cfg.name, exc)
            raise LlmGatewayError("Renderer payload was not JSON") from exc
        return _extract_content(data)
    finally:
        if close_cb is not None:
            close_cb()


def _post(
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    timeout: float,
    client: Optional[HttpClient],
) -> Tuple[HttpResponse, Optional[Callable[[], None]]]:  # Dispatch HTTP request
    if client is not None:
        return client.post(url, json=payload, headers=headers, timeout=timeout), None
    http_client = httpx.Client(timeout=timeout)
    try:
        response = http_client.post(url, json=payload, headers=headers)
    except httpx.HTTPError:
        http_client.close()
        raise
    return response, http_client.close


def _normalize_messages(messages: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:  # Ensure message payload shape
    normalized: List[Dict[str, str]] = []
    for item in messages:
        if not isinstance(item, dict):
            raise TypeError("Each chat message must be a dict with role/content")
        role = str(item.get("role", "")).strip()
        if not role:
            raise ValueError("Chat message missing role")
        normalized.append({"role": role, "content": str(item.get("content", ""))})
    return normalized


def _preview(messages: Sequence[Dict[str, str]]) -> str:  # First non-empty line, clipped for logs
    for message in reversed(messages):
        text = message.get("content", "").strip()
        if text:
            line = text.splitlines()[0]
            return line if len(line) <= 120 else line[:117] + "..."
    return ""


def _extract_content(data: Any) -> str:  # Pull message content from an OpenAI-style reply
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise LlmGatewayError("Renderer response missing content")


def _strip_code_fences(content: str) -> str:  # Remove markdown fences around JSON
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = text.splitlines()[1:]
    while lines and not lines[-1].strip():
        lines.pop()
    if lines and lines[-1].strip() == "```":
        lines.pop()
    return "\n".join(lines).strip()


def _retry_hint(error_text: str, enforce_json: bool) -> str:  # Compose retry instructions including last error
    reason = error_text.splitlines()[0].strip() if error_text else ""
    if len(reason) > 200:
        reason = reason[:197] + "..."
    base = "The previous reply failed validation."
    if reason:
        base += f" Reason: {reason}."
    if enforce_json:
        return base + " Return a single JSON object that matches the schema."
    return base + " Follow the requested format precisely."


def _render_instructions(request: Any) -> str:  # System prompt describing one render request
    style = request.style
    constraints = request.constraints
    lines = [
        f"You are an interviewer with the persona '{request.persona}' in the {request.phase} phase.",
        f"Write ONE {request.question_type.replace('_', ' ')} question (intent: {request.intent}, difficulty: {request.difficulty}).",
        f"Tone: {style.tone}; formality {style.formality:.1f}; enthusiasm {style.enthusiasm:.1f}.",
        f"Keep it under {constraints.max_length} characters.",
    ]
    if request.topic:
        lines.append(f"Stay on the topic: {request.topic.replace('_', ' ')}.")
    if request.follow_up_types:
        lines.append("Angles worth exploring: " + ", ".join(request.follow_up_types) + ".")
    if request.profile is not None:
        lines.append("Candidate context: " + request.profile.summary() + ". Personalize the question where it fits.")
    if request.adaptations:
        lines.append("Adjust for: " + ", ".join(action.replace("_", " ") for action in request.adaptations) + ".")
    if constraints.forbidden_terms:
        lines.append("Never use these terms: " + ", ".join(constraints.forbidden_terms) + ".")
    if request.revision_notes:
        lines.append("Fix these problems from the previous draft: " + "; ".join(request.revision_notes) + ".")
    lines.append("Score your own draft for clarity, relevance, engagement, appropriateness, naturalness, consistency (0-1).")
    return "\n".join(lines)


def render_via_route(
    route: LlmRoute,
    *,
    client: Optional[HttpClient] = None,
) -> Callable[..., Dict[str, Any]]:
    """Build a registry-compatible renderer backed by ``route``."""

    def _render(*, request: Any) -> Dict[str, Any]:
        messages = [{"role": "system", "content": _render_instructions(request)}]
        messages.extend(request.history)
        reply = chat(messages, RenderedUtterance, cfg=route, client=client)
        return reply.model_dump()

    return _render
