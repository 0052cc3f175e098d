"""
Job-Cost Kernel

Infrastructure shared by the job-cost modules:
- Ledger primitives for signed, tolerance-based balancing
- Typed errors with stable codes
- Advisory entity locks and single-use undo snapshots
- Structured logging and SQLAlchemy persistence
"""

__version__ = "0.1.0"
