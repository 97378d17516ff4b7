"""Durable job orchestration for multi-step agent workflows.

Architecture (bottom-up):
- schemas: JobStep, AgentJob, StepKind, typed step results
- errors: Orchestrator and step error taxonomy
- db: Postgres/SQLite connection management and table setup
- job_store: JobStore protocol and the SQL implementation (compare-and-swap)
- orchestrator: Lifecycle transitions, retry bookkeeping, leases
- quiz_steps: Step definitions for the quiz generation workflow
- quiz_handlers: Handlers for each quiz step kind
- step_executor: Closed dispatch table with per-step timeouts
- worker: Background poll loop that drives Running jobs forward
"""
