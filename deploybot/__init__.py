"""deploybot: batch approved pull requests into a dated release branch."""

__version__ = "0.1.0"
