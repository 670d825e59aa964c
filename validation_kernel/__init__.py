"""
Validation Kernel

Hierarchical validation of business actions with:
- Rule-based auto-decisions (first match wins)
- Amount-driven authority levels
- Optimistic concurrency on every request write
- Append-only validation history
- Full auditability via hash chain
"""

__version__ = "0.1.0"
