"""
Ritual engine services package.
"""

from ritual_engine.services.analytics import AnalyticsAggregator, summarize_completions
from ritual_engine.services.completion_service import CompletionRecorder
from ritual_engine.services.ritual_service import RitualService
from ritual_engine.services.streaks import PeriodPolicy, StreakResult, calculate_streaks
from ritual_engine.services.template_service import TemplateService

__all__ = [
    "AnalyticsAggregator",
    "summarize_completions",
    "CompletionRecorder",
    "RitualService",
    "PeriodPolicy",
    "StreakResult",
    "calculate_streaks",
    "TemplateService",
]
