"""
Campaign Kernel

Foundation layer for the campaign workflow automation engine:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Tenant-scoped SQLAlchemy models for campaigns and derived records
- Pure domain value objects (milestones, workflow context, rules, clock)
"""

__version__ = "0.1.0"
