"""blueprint-forge: blueprint-driven project generation engine."""

__version__ = "0.1.0"
