"""Tag reading."""

from soulscan.infrastructure.metadata.mutagen_extractor import MutagenMetadataExtractor

__all__ = ["MutagenMetadataExtractor"]
