"""
Reminder engine.

Components:
- ledger.py: persisted idempotency set + per-task daily counters
- policy.py: pure decision function (Reminder / Overdue / FollowUp / nothing)
- composer.py: persona-aware message generation with deterministic fallback
- memory_context.py: optional knowledge-graph file used to enrich prompts
- scheduler.py: periodic tick + daily greeting timers
"""
