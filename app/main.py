"""
Compliant Connect API application.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.api import audit, companies, components, pirs, question_bank, responses, reviews
from app.core.config import settings
from app.core.errors import PIRError, pir_error_handler, sqlalchemy_error_handler
from app.core.logging import setup_logging, get_logger
from app.db.session import init_db
from app.services.responses import save_answer_in_session
from app.services.save_scheduler import SaveScheduler

setup_logging()
logger = get_logger(__name__)


async def write_answer(key, value):
    """Writer behind the save scheduler: one committed save per call."""
    pir_id, question_id = key
    return await run_in_threadpool(save_answer_in_session, pir_id, question_id, value["answer"], value["ctx"])


def create_save_scheduler() -> SaveScheduler:
    return SaveScheduler(write_answer, default_delay=settings.ANSWER_SAVE_DEBOUNCE_MS / 1000.0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    app.state.save_scheduler = create_save_scheduler()
    yield
    await app.state.save_scheduler.close()
    logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
app.state.save_scheduler = create_save_scheduler()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(PIRError, pir_error_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)

app.include_router(companies.router)
app.include_router(question_bank.router)
app.include_router(pirs.router)
app.include_router(responses.router)
app.include_router(components.router)
app.include_router(reviews.router)
app.include_router(audit.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
