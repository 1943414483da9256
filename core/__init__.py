"""
core — Constants, run-state FSM, typed configuration and structured logging.
"""
