"""Thread dispatch primitives, a parallel apply, benchmarking, a Game of Life and a small web server."""

__version__ = "0.1.0"

__all__ = ["__version__"]