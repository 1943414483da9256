"""
pipeline — Query orchestration.

The orchestrator drives a query through the five fixed stages
(route → retrieve → generate → verify → score), paced by the stage clock,
then resolves the answer and records it in the bounded history.
"""
