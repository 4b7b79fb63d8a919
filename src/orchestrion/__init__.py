"""Orchestrion - task scheduling and workflow orchestration for automation providers."""

__version__ = "0.1.0"

__all__ = ["__version__"]
