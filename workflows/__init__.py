"""Workflow definitions module."""

from workflows.auto_consolidation_workflow import AutoConsolidationWorkflow, AutoConsolidationInput

__all__ = ["AutoConsolidationWorkflow", "AutoConsolidationInput"]
