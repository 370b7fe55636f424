"""Voice command pipeline for hands-free workout logging."""

__version__ = "0.1.0"
