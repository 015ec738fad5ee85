"""Decoders and per-category detectors."""

from .decoders import DecodedPayload, Decoder, Encoding
from .detectors import (
    ALIASED_EVAL_RULE_ID,
    ALIASED_SHELL_RULE_ID,
    CATEGORY_ORDER,
    DECODED_PAYLOAD_RULE_ID,
    ENTROPY_RULE_ID,
    AliasCallDetector,
    Detector,
    DetectorSet,
    EntropyDetector,
    ObfuscationDetector,
    PatternDetector,
    escalate,
    shannon_entropy,
)

__all__ = [
    "ALIASED_EVAL_RULE_ID",
    "ALIASED_SHELL_RULE_ID",
    "AliasCallDetector",
    "CATEGORY_ORDER",
    "DECODED_PAYLOAD_RULE_ID",
    "DecodedPayload",
    "Decoder",
    "Detector",
    "DetectorSet",
    "ENTROPY_RULE_ID",
    "Encoding",
    "EntropyDetector",
    "ObfuscationDetector",
    "PatternDetector",
    "escalate",
    "shannon_entropy",
]
