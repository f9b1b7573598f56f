from .collector import MetricsCollector
from .gate import DecisionGate
from .learner import PatternLearner

__all__ = ["MetricsCollector", "DecisionGate", "PatternLearner"]
