"""
Finance Reconciler - Source Package

The reconciliation and notification engine of a personal-finance backend:
recurring transaction reminders, budget threshold warnings, income
allocation to savings goals and goal milestones.

DESIGN PRINCIPLES:
1. One detected state transition, at most one notification
2. Two triggers (sweep and transaction hook), one code path
3. A bad record never stops a sweep
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Reconciler Team"
