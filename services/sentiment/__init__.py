"""News ingestion, keyword sentiment and per-symbol impact."""

__all__ = [
    "types",
    "filters",
    "rule_model",
    "impact",
    "fetchers",
]
