"""
Prefect flows for the precompute pipeline.

Flows:
- precompute-exposure: fill the exposure cache for today and the next days
- reap-exposure-cache: drop expired and stale buckets

Usage (local):
    python -m patio_sun.flows.precompute

Usage (Prefect):
    prefect server start  # Optional, for dashboard
    prefect deployment run 'precompute-exposure/default'
"""
