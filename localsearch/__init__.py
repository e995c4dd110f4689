"""Local, offline semantic search over a project directory."""

__version__ = "0.1.0"

__all__ = ["__version__"]
