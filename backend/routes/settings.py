"""Health check and settings endpoints."""

from fastapi import APIRouter, Request

from taleweaver import config as app_config

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get app settings (LLM connection, timeouts, retry, prompt overrides)."""
    return app_config.get_config(request.app.state.data_dir)


@router.patch("/settings")
async def update_settings(body: dict, request: Request):
    """Update app settings (partial merge) and rewire the engine."""
    from backend.app import build_engine

    updated = app_config.update_config(request.app.state.data_dir, body)
    request.app.state.engine = build_engine(
        request.app.state.data_dir,
        request.app.state.llm,
        request.app.state.engine.triggers,
    )
    return updated
