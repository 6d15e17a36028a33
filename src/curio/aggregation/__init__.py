"""Aggregation of pipeline state into outward summaries.

Reads the store through repo and produces pydantic summaries;
never mutates candidates or run logs.
"""
