"""Domain layer: records, windows, conflict rules, and the discount evaluator.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
