"""Advisor insight orchestration: snapshot, generation, gatekeeping and caching."""
