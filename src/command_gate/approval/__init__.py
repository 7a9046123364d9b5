"""Operator approval gate and the single-consumer approval loop."""

from command_gate.approval.gate import (
    ApprovalGate,
    AutoRejectGate,
    Decision,
    TerminalApprovalGate,
    open_approval_gate,
)
from command_gate.approval.loop import ApprovalLoop, ApprovalLoopSummary

__all__ = [
    "ApprovalGate",
    "ApprovalLoop",
    "ApprovalLoopSummary",
    "AutoRejectGate",
    "Decision",
    "TerminalApprovalGate",
    "open_approval_gate",
]
