"""Export report generation for console display and JSON export."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..logger import format_duration
from ..models import ExportJob, ExportStats


class ExportReport:
    """Generates export reports from run statistics."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('confluence_exporter.orchestrator.report')

    def generate_report(self, stats: ExportStats, job: ExportJob) -> Dict[str, Any]:
        """
        Build the report dictionary.

        Args:
            stats: Statistics of the finished run
            job: The job that was run

        Returns:
            Report dictionary (JSON serializable)
        """
        settings = job.settings
        return {
            'generated_at': datetime.now(timezone.utc).isoformat(),
            'job': {
                'scope': job.scope.value,
                'target': job.target,
                'output_directory': settings.output_directory,
                'format': settings.format.value,
            },
            'summary': {
                **stats.to_dict(),
                'duration_formatted': format_duration(stats.duration_seconds),
                'succeeded': stats.succeeded,
            },
        }

    def format_console_report(self, stats: ExportStats, job: ExportJob) -> str:
        """
        Format report for console display.

        Args:
            stats: Statistics of the finished run
            job: The job that was run

        Returns:
            Formatted console string
        """
        target = f" {job.target}" if job.target else ''
        sections = [
            "=" * 60,
            "EXPORT REPORT",
            "=" * 60,
            "",
            "Summary:",
            f"  Scope:       {job.scope.value}{target}",
        ]

        if not stats.found:
            sections.append("  Status:      NOT FOUND")
            sections.append("=" * 60)
            return '\n'.join(sections)

        sections.extend([
            f"  Spaces:      {stats.spaces_exported}",
            f"  Pages:       {stats.pages_exported} exported, {stats.pages_failed} failed",
            f"  Assets:      {stats.assets_downloaded} downloaded, {stats.assets_failed} failed",
            f"  Written:     {self._format_bytes(stats.bytes_written)}",
            f"  Output:      {job.settings.output_directory}",
            f"  Duration:    {format_duration(stats.duration_seconds)}",
        ])

        if stats.failures:
            sections.append("")
            sections.append("Failed Pages:")
            sections.append("-" * 60)
            for failure in stats.failures[:20]:
                sections.append(f"  {failure['page_id']} {failure['title']}: {failure['error']}")
            if len(stats.failures) > 20:
                sections.append(f"  ... and {len(stats.failures) - 20} more")

        sections.append("=" * 60)
        return '\n'.join(sections)

    def export_json_report(self, stats: ExportStats, job: ExportJob, filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            stats: Statistics of the finished run
            job: The job that was run
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(self.generate_report(stats, job), f, indent=2, ensure_ascii=False, default=str)

            self.logger.info(f"JSON report exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export JSON report: {str(e)}")

    @staticmethod
    def _format_bytes(size: float) -> str:
        if size == 0:
            return "0 B"

        for unit in ['B', 'KB', 'MB', 'GB']:
            if size < 1024.0:
                return f"{size:.1f} {unit}"
            size /= 1024.0
        return f"{size:.1f} TB"


__all__ = ['ExportReport']
