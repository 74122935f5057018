"""Infrastructure layer: persistence, filesystem, tag reading, HTTP providers."""
