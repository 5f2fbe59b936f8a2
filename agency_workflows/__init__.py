"""Agency Workflows: execution engine for declarative automation workflows."""

__version__ = "1.0.0"
