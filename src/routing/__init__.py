"""Request classification and per-class caching strategies."""
from routing.classifier import DEFAULT_RULES, ClassifierRules, classify
from routing.router import FetchRouter

__all__ = [
    'DEFAULT_RULES',
    'ClassifierRules',
    'FetchRouter',
    'classify',
]
