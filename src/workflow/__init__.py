"""Workflow definition export."""

from src.workflow.generator import WORKFLOW_FILENAME, generate_workflow_yaml

__all__ = ["WORKFLOW_FILENAME", "generate_workflow_yaml"]
