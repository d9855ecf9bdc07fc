from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from app.db.session import create_db_engine, create_session_factory, init_db
from services.scheduler.jobs import ReminderJobs
from services.whatsapp_gateway.outbound import GatewayTransport
from shared.settings import EngineSettings, configure_logging

logger = logging.getLogger(__name__)

_jobs: ReminderJobs | None = None


def build_jobs(settings: EngineSettings) -> ReminderJobs:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return ReminderJobs(create_session_factory(engine), GatewayTransport(settings.gateway_url), settings)


def get_jobs() -> ReminderJobs:
    global _jobs
    if _jobs is None:
        _jobs = build_jobs(EngineSettings.from_env())
    return _jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = EngineSettings.from_env()
    configure_logging(settings.log_level)
    jobs = None
    if settings.scheduler_enabled:
        jobs = get_jobs()
        jobs.start()
    else:
        logger.info("SCHEDULER_ENABLED is off; jobs run only through /jobs endpoints")
    yield
    if jobs is not None:
        jobs.shutdown()


app = FastAPI(title="scheduler", lifespan=lifespan)


class TickRequest(BaseModel):
    now: datetime | None = None


@app.get("/health")
def health() -> dict[str, str | bool]:
    settings = EngineSettings.from_env()
    return {
        "status": "ok",
        "service": "scheduler",
        "scheduler_enabled": settings.scheduler_enabled,
    }


@app.post("/jobs/dispatch")
def run_dispatch(payload: TickRequest | None = None, jobs: ReminderJobs = Depends(get_jobs)) -> dict:
    return asdict(jobs.dispatch_tick(payload.now if payload else None))


@app.post("/jobs/followup")
def run_followup(payload: TickRequest | None = None, jobs: ReminderJobs = Depends(get_jobs)) -> dict:
    return asdict(jobs.followup_tick(payload.now if payload else None))


@app.post("/jobs/materialize")
def run_materialize(payload: TickRequest | None = None, jobs: ReminderJobs = Depends(get_jobs)) -> dict:
    return asdict(jobs.materialize_tick(payload.now if payload else None))
