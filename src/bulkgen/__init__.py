"""License-gated proxy for bulk AI content generation."""

__version__ = "0.1.0"
