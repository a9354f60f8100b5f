"""Free-text intent classification."""

from chain_allocator.intent.classifier import (
    INTENT_RULES,
    IntentClassifier,
    IntentRule,
    classify,
    extract_entities,
)

__all__ = ["INTENT_RULES", "IntentClassifier", "IntentRule", "classify", "extract_entities"]
