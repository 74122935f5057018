"""Application layer: scan orchestration and enrichment services."""
