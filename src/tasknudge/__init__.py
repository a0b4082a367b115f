"""
Reminder and notification engine for a personal task manager.

Components:
- core/: task and policy data model, recurrence arithmetic, personas, ports
- reminders/: policy engine, ledger, message composer, scheduler
- llm/: message providers (Claude, Gemini, OpenAI, offline)
- connectors/: Discord DM and desktop notification channels
- tasks/: JSON task store used by the CLI
- cli/: `tasknudge` command line and slash-command console
"""
