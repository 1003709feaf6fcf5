"""Execution pipeline: candidate chains, failure classification, fallback."""
