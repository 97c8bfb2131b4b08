"""Poll room domain services: store, connections, fan-out, timers, sessions.

This package holds the room logic that HTTP routes and socket handlers
call into, keeping transport concerns separate from the room state machine.
"""
