from __future__ import annotations  # Re-export llm_gateway public API

from .llm_gateway import HttpClient, HttpResponse, LlmGatewayError, RenderedUtterance, chat, render_via_route

__all__ = ["HttpClient", "HttpResponse", "LlmGatewayError", "RenderedUtterance", "chat", "render_via_route"]
