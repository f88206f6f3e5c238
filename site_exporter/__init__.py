"""Site export engine: database dump plus filtered site archive with a managed lifecycle."""

__version__ = "1.0.0"
