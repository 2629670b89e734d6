"""Examclock - Exam window lifecycle core.

This package keeps exam windows in the right lifecycle state as wall-clock
time passes and as enrollment capacity fills or frees up, and pushes every
state change to the oversight dashboards of the window's owner.
"""

__version__ = "0.1.0"
