"""
Scheduler package for catalogue maintenance.

This package contains:
- Daily overdue-loan sweep
- Recovery sweep for unreconciled propagation intents
- Pruning of completed intents
- Alerting system
"""

__version__ = "1.0.0"
