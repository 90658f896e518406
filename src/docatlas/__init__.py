"""DocAtlas: job, cache and index-state coordination for a reasoning-based document search engine."""

__version__ = "0.1.0"
