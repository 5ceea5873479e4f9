"""
Ritual Engine: habit/routine definitions, completion log, streaks and analytics.
"""

__version__ = "1.0.0"
