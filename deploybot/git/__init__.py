"""Local git access for the release workspace."""
