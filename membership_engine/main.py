import logging

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI

from membership_engine import app_context
from membership_engine.app.routes.jobs import router as membership_jobs_router
from membership_engine.app.services.lifecycle import (
    get_engine_config,
    shutdown_membership_scheduler,
    start_membership_scheduler,
)

load_dotenv()

logger = logging.getLogger("memberships")


def get_conn():
    return psycopg2.connect(**get_engine_config().db)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Membership Lifecycle Engine")

app.include_router(membership_jobs_router)


@app.on_event("startup")
def _start_membership_scheduler() -> None:
    scheduler = start_membership_scheduler()
    logger.info("Membership scheduler ready", extra={"triggers": scheduler.trigger_names()})


@app.on_event("shutdown")
def _shutdown_membership_scheduler() -> None:
    shutdown_membership_scheduler()


@app.get("/api/health")
def read_health():
    return {"status": "ok"}
