"""
Expense Kernel - Approval Workflow Engine

Routes a submitted expense through a configurable, multi-phase approval
process with:
- Priority-ordered rule selection
- Per-approver step generation from manager, specific and role sources
- Percentage thresholds within parallel sequences
- A terminal-safe expense state machine
- An append-only approval history
"""

__version__ = "0.1.0"
