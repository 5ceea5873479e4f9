"""
Ritual Engine Schemas Package
Exports request and response schemas.
"""

from ritual_engine.schema.request import (
    CompletionDraft,
    RitualDraft,
    RitualPatch,
    StepDraft,
    StepPatch,
    TemplateDraft,
)
from ritual_engine.schema.response import (
    AnalyticsSummary,
    APIResponse,
    DeleteAck,
    Page,
    RitualCompletionRead,
    RitualRead,
    RitualStepRead,
    RitualTemplateRead,
)

__all__ = [
    # Requests
    "CompletionDraft",
    "RitualDraft",
    "RitualPatch",
    "StepDraft",
    "StepPatch",
    "TemplateDraft",

    # Responses
    "AnalyticsSummary",
    "APIResponse",
    "DeleteAck",
    "Page",
    "RitualCompletionRead",
    "RitualRead",
    "RitualStepRead",
    "RitualTemplateRead",
]
