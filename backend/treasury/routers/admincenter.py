from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from treasury.db import get_session
from treasury.services import events


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def get_health() -> dict:
    """
    Health information for Admin Center.

    - db: "ok" when a trivial query succeeds, "error" otherwise
    - events: number of registered event subscribers
    """
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        db_status = "error"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "components": {
            "db": db_status,
            "events": events.subscriber_count(),
        },
    }
