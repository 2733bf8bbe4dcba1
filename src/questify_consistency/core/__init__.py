"""
Questify Consistency Core

Database access, event envelope, outbox, inbox, messaging and exports.
"""

from . import database
from . import events

__all__ = ["database", "events"]
