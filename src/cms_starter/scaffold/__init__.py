"""Project scaffolding."""

from .scaffolder import WORKFLOW_PATH, ScaffoldError, Scaffolder, TemplateContext

__all__ = ["WORKFLOW_PATH", "ScaffoldError", "Scaffolder", "TemplateContext"]
