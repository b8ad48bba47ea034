"""
Parsing of Google Trends timeline exports and writing of fetched reports.
"""

import csv
import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from errors import ParseError
from models import OutputFormat, Report, TimelinePoint


logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"\d{4}-\d{2}", re.ASCII)
_INTENSITY_RE = re.compile(r"\d+", re.ASCII)


def parse_timeline_csv(path: Union[str, Path], preamble_rows: int = 1) -> List[TimelinePoint]:
    """
    Parse a ``multiTimeline.csv`` export into timeline points.

    The export looks like::

        Category: All categories

        Month,rust: (United States)
        2004-01,45
        2004-02,60

    Rows have differing field counts, so the file is read row by row
    and positions are used instead of a fixed schema. Empty lines are
    ignored, ``preamble_rows`` metadata rows are dropped, then the table
    header is skipped. Any malformed data row fails the whole parse.

    Args:
        path: Path to the exported file
        preamble_rows: Number of metadata rows before the table header

    Returns:
        Points in file order

    Raises:
        ParseError: File is missing or a row cannot be parsed
    """
    points = []
    seen = 0

    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            reader = csv.reader(f)
            for row in reader:
                if not row:
                    continue

                seen += 1
                # metadata rows, then the table header
                if seen <= preamble_rows + 1:
                    continue

                points.append(_parse_row(row, reader.line_num))
    except OSError as e:
        raise ParseError(f"Could not read export file {path}: {e}") from e
    except csv.Error as e:
        raise ParseError(f"Malformed CSV in {path}: {e}") from e

    logger.info(f"Parsed {len(points)} timeline points from {path}")
    return points


def _parse_row(row: List[str], row_number: int) -> TimelinePoint:
    """Convert one ``<year-month>,<intensity>`` row."""
    if len(row) < 2:
        raise ParseError("Expected at least 2 fields", row_number, row)

    month = row[0].strip()
    if not _MONTH_RE.fullmatch(month):
        raise ParseError(f"Invalid month '{row[0]}'", row_number, row)
    try:
        period = datetime.strptime(f"{month}-01", "%Y-%m-%d").date()
    except ValueError as e:
        raise ParseError(f"Invalid month '{row[0]}'", row_number, row) from e

    try:
        intensity = _parse_intensity(row[1])
    except ValueError as e:
        raise ParseError(f"Invalid intensity '{row[1]}'", row_number, row) from e

    return TimelinePoint(period=period, intensity=intensity)


def _parse_intensity(value: str) -> int:
    """Plain ASCII digits only; ``int()`` alone also takes ``1_0`` or non-Latin digits."""
    value = value.strip()
    if not _INTENSITY_RE.fullmatch(value):
        raise ValueError(f"not a non-negative integer: {value!r}")
    return int(value)


class DataExporter:
    """Handle exporting reports to various formats."""

    def export_reports(
        self,
        reports: List[Report],
        output_path: str,
        format: OutputFormat
    ) -> bool:
        """
        Export reports to specified format.

        Args:
            reports: Reports to export
            output_path: Output file path
            format: Output format

        Returns:
            True if export successful, False otherwise
        """
        try:
            os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

            if format == OutputFormat.JSON:
                self._export_json(reports, output_path)
            elif format == OutputFormat.CSV:
                self._export_csv(reports, output_path)
            elif format == OutputFormat.PARQUET:
                self._export_parquet(reports, output_path)
            else:
                logger.error(f"Unsupported export format: {format}")
                return False

            logger.info(f"Exported {len(reports)} reports to {format.value}: {output_path}")
            return True

        except (OSError, ValueError, pa.ArrowException) as e:
            logger.error(f"Error exporting data: {e}")
            return False

    def _export_json(self, reports: List[Report], output_path: str):
        data = [report.model_dump(mode="json") for report in reports]

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def _export_csv(self, reports: List[Report], output_path: str):
        df = self.reports_to_dataframe(reports)
        df.to_csv(output_path, index=False, encoding='utf-8')

    def _export_parquet(self, reports: List[Report], output_path: str):
        df = self.reports_to_dataframe(reports)
        table = pa.Table.from_pandas(df, preserve_index=False)
        pq.write_table(table, output_path)

    def reports_to_dataframe(self, reports: List[Report]) -> pd.DataFrame:
        """Flatten reports into one row per (keyword, month)."""
        data = []

        for report in reports:
            for point in report.timeline:
                data.append({
                    'keyword': report.keyword,
                    'period': point.period.isoformat(),
                    'intensity': point.intensity,
                    'retrieved_at': report.retrieved_at.isoformat()
                })

        return pd.DataFrame(data, columns=['keyword', 'period', 'intensity', 'retrieved_at'])


def print_export_summary(
    reports: List[Report],
    output_path: str,
    params: Dict[str, Any],
    duration: float
):
    """
    Print export summary to stdout.

    Args:
        reports: Exported reports
        output_path: Output file path
        params: Fetch parameters
        duration: Processing duration in seconds
    """
    print(f"\n=== Export Summary ===")
    print(f"Keywords exported: {len(reports)}")
    print(f"Timeline points: {sum(len(r.timeline) for r in reports)}")
    print(f"Output file: {output_path}")
    print(f"File size: {_format_file_size(output_path)}")
    print(f"Processing time: {duration:.2f}s")
    print(f"Download directory: {params.get('download_dir', 'N/A')}")

    if reports:
        print(f"\nLatest values:")
        for report in reports:
            if report.timeline:
                last = report.timeline[-1]
                print(f"  - {report.keyword}: {last.intensity} ({last.period:%Y-%m})")
            else:
                print(f"  - {report.keyword}: no data")


def _format_file_size(filepath: str) -> str:
    """Format file size in human readable format."""
    try:
        size = os.path.getsize(filepath)
    except OSError:
        return "Unknown"

    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
