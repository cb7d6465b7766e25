from __future__ import annotations  # FastAPI server exposing the interview dialogue engine

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config import RENDERER_KEY, load_config, resolve_route
from config.settings import settings
from config.templates import load_templates, resolve_config_path
from graph.build import EngineDeps
from llm_gateway import render_via_route
from services.sessions import SessionStore


logger = logging.getLogger(__name__)


def _configured_renderer() -> Optional[Callable[..., Any]]:  # Route-backed renderer from the app config, if any
    config_path: Path = resolve_config_path(settings.APP_CONFIG_PATH)
    if not config_path.exists():
        logger.warning("No route config at %s; turns will use template responses", config_path)
        return None
    route = resolve_route(load_config(config_path), RENDERER_KEY)
    logger.info("Renderer routed to %s model=%s", route.name, route.model)
    return render_via_route(route)


def create_app(
    *,
    renderer: Optional[Callable[..., Any]] = None,
    store: Optional[SessionStore] = None,
) -> FastAPI:
    """Build the API app with its own session store and loaded rule tables.

    The renderer is handed to this app's engine deps only, so apps built in
    the same process never share or overwrite each other's renderer. A
    supplied ``store`` keeps its own renderer when it already has one.
    """

    templates = load_templates()
    if store is None:
        store = SessionStore(EngineDeps(renderer=renderer or _configured_renderer()))
    elif store.deps.renderer is None:
        store.deps = store.deps.model_copy(update={"renderer": renderer or _configured_renderer()})

    app = FastAPI(title="Interview Dialogue Engine API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.sessions = store
    app.include_router(router)

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok", "phases": len(templates.phases)}

    return app


app = create_app()
