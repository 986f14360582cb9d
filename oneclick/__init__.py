"""
OneClick rule automation engine.

Loads trigger/action rules scoped to a work item type and project, keeps
them in a stamp-validated local cache and runs them against form
lifecycle events.
"""

__version__ = "0.1.0"
