"""Tento Jobs - durable multi-step job orchestration.

This service runs long, multi-step agent workflows to completion:
- Jobs (ordered steps, cursor, results) persisted as single rows
- Orchestrator lifecycle (start, complete step, retry, pause, resume)
- Background worker with leases, backoff, and bounded concurrency
- Reference workflow: source URL -> summary -> generated quiz
"""

__version__ = "0.1.0"
