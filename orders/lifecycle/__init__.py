"""
Clinical order lifecycle core: transition table, permission gate, billing gate
and the state machine that enforces them. No Django imports at module level
except in factory.py.
"""
