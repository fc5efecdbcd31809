"""Case-control matching for observational cohort studies."""

__version__ = "0.1.0"
