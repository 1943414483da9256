"""
answer — Answer resolution: the fixed knowledge catalog, the keyword-matching
resolver with its synthesized fallback, and confidence band assessment.

The resolver sits behind a single ``resolve(query, domain)`` call so a real
retrieval/generation backend can replace it without touching the pipeline.
"""
