"""
ui — Presentation adapters: console view, confidence animator, FastAPI web API.
"""
