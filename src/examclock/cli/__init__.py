"""CLI sub-commands for Examclock."""
