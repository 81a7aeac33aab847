"""
thesis_eval
Evaluation lifecycle backend for thesis defenses: panelist rubric evaluations
and student feedback evaluations under one assignable, auditable workflow.
"""
__version__ = "0.1.0"
