"""Scholar: curate YouTube videos against personal learning categories."""

__version__ = "0.1.0"

__all__ = ["__version__"]
