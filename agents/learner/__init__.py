from .agent import PatternLearner

__all__ = ["PatternLearner"]
