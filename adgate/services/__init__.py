"""
Orchestration services composing the atomic components.
"""

from .gate import UnlockGateService, VisitorInit, new_visitor_id

__all__ = ["UnlockGateService", "VisitorInit", "new_visitor_id"]
