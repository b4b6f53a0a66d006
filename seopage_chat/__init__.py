"""Real-time connection core for the SeoPage page-generation chat."""

__version__ = "1.0.0"
