"""Orchestrator package for coordinating the export pipeline."""

from .export_orchestrator import ExportOrchestrator
from .export_report import ExportReport

__all__ = ['ExportOrchestrator', 'ExportReport']
