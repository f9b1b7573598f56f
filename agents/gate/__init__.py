from .agent import DecisionGate, GateAction, GateDecision
from .fixes import FIX_ACTIONS, FixAction, get_fix_action

__all__ = ["DecisionGate", "GateAction", "GateDecision", "FIX_ACTIONS", "FixAction", "get_fix_action"]
