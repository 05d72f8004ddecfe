"""Game domain services: round engine and delayed answer resolution.

This package contains pure(ish) domain logic that is driven by the socket
handlers and by timers, keeping transport concerns separated from core
game mechanics.
"""
