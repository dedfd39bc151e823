"""Back-office engine for a securities operations desk.

Position reconciliation, break tracking, an exceptions desk with SLA
escalation, maker-checker authorization and a hash-chained audit trail.
"""

__version__ = "0.1.0"
