"""Game engine: per-competition state machines, countdown clock, grading
and audience routing.

This package holds the round logic that socket handlers and HTTP routes
call into, keeping transport concerns separated from game mechanics.
"""
