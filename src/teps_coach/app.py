from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api_support import ok, register_error_handlers
from .db import init_db
from .exam_routes import router as exam_router
from .learning_routes import router as learning_router
from .question_ai import ai_available
from .question_routes import router as question_router

LOG_LEVEL = os.environ.get("TEPS_COACH_LOG_LEVEL", "INFO")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Avoid verbose request URL logging from http clients.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


configure_logging(LOG_LEVEL)

# Ensure the database schema exists even when lifespan hooks are not triggered (e.g. in tests).
init_db()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="TEPS Coach", lifespan=lifespan)
app.include_router(exam_router)
app.include_router(learning_router)
app.include_router(question_router)
register_error_handlers(app)


@app.get("/health")
async def health() -> dict:
    return ok({"status": "ok", "ai_available": ai_available()})


def main() -> None:
    import uvicorn

    uvicorn.run("teps_coach.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
