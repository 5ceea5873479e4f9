"""
FastAPI dependencies: services are built per request around the
application's Database; nothing is cached at module level.
"""

from fastapi import Depends, Request

from ritual_engine.db import Database
from ritual_engine.models import utcnow
from ritual_engine.services import (
    AnalyticsAggregator,
    CompletionRecorder,
    RitualService,
    TemplateService,
)


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_clock(request: Request):
    return getattr(request.app.state, "clock", None) or utcnow


def get_ritual_service(db: Database = Depends(get_database), clock=Depends(get_clock)) -> RitualService:
    return RitualService(db, clock=clock)


def get_completion_recorder(
    db: Database = Depends(get_database), clock=Depends(get_clock)
) -> CompletionRecorder:
    return CompletionRecorder(db, clock=clock)


def get_analytics(db: Database = Depends(get_database), clock=Depends(get_clock)) -> AnalyticsAggregator:
    return AnalyticsAggregator(db, clock=clock)


def get_template_service(db: Database = Depends(get_database), clock=Depends(get_clock)) -> TemplateService:
    return TemplateService(db, clock=clock)
