"""Compute Ops job and schedule orchestration engine."""
