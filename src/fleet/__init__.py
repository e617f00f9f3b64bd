"""Pipeline orchestration engine for the beads app factory fleet board.

This package drives epics through the factory pipeline, providing:
- A closed registry of pipeline actions and their label recipes
- App name resolution for per-app working directories
- A singleton agent process manager (launch, observe, stop)
- The completion-triggered transition resolver, including the bounded
  QA fix-and-retest loop
- Label store and issue lookups through the beads CLI
- Pipeline events, Prometheus metrics and the FastAPI surface
"""
