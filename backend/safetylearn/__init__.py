"""SafetyLearn account backend: identity, profile sync and progress tracking."""

__version__ = "0.1.0"
