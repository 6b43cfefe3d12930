import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import router
from taleweaver import config as app_config
from taleweaver.engine import (
    BackgroundTriggers,
    EngineContext,
    GenerationError,
    InvalidTransitionError,
    PreconditionError,
    SessionBusyError,
    SessionLocks,
    StaleMessageError,
    StoryEngineError,
    TraitsGateOpenError,
)
from taleweaver.generation import GenerationClient
from taleweaver.llm import LLM, HttpLLM
from taleweaver.storage import Storage

logger = logging.getLogger(__name__)

app_config.load_env()

_STATUS: list[tuple[type[StoryEngineError], int]] = [
    (GenerationError, 502),
    (StaleMessageError, 409),
    (TraitsGateOpenError, 409),
    (InvalidTransitionError, 409),
    (SessionBusyError, 409),
    (PreconditionError, 400),
]


async def engine_error_handler(request: Request, exc: StoryEngineError) -> JSONResponse:
    status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 400)
    body: dict = {"ok": False, "error": type(exc).__name__, "errorMessage": str(exc)}
    if isinstance(exc, GenerationError):
        body["userMessage"] = exc.user_message
        logger.warning("generation error on %s: %s", request.url.path, exc.diagnostic)
    return JSONResponse(body, status_code=status)


def build_engine(
    data_dir: Path, llm: LLM | None = None, triggers: BackgroundTriggers | None = None
) -> EngineContext:
    """Wire storage, LLM and generation client from config.json + env.

    Pass `triggers` to keep registered handlers across a rebuild.
    """
    storage = Storage(data_dir)
    config = app_config.get_config(data_dir)
    client = GenerationClient.from_config(storage, llm or HttpLLM.from_config(config), config)
    return EngineContext.from_config(storage, client, config, triggers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # let in-flight trigger handlers finish before the loop closes
    await app.state.engine.triggers.drain()


def create_app(data_dir: Path | None = None, llm: LLM | None = None) -> FastAPI:
    app_config.configure_logging()
    resolved = data_dir or app_config.data_dir_from_env()
    resolved.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="Taleweaver", lifespan=lifespan)
    app.state.data_dir = resolved
    app.state.llm = llm
    app.state.engine = build_engine(resolved, llm)
    app.state.locks = SessionLocks()
    app.add_exception_handler(StoryEngineError, engine_error_handler)
    app.include_router(router, prefix="/api")
    return app
