#!/usr/bin/env python3
"""
Google Trends interest-over-time fetcher.

This script opens the Google Trends explore page for each keyword in a
browser session, downloads the official "interest over time" CSV export
and saves the monthly series in the requested format.
"""

import asyncio
import os
import sys
import time
from typing import List, Optional

import typer
from dotenv import load_dotenv

from models import ErrorReport, FetchParams, OutputFormat
from scraper import fetch_keywords
from exporter import DataExporter, print_export_summary
from utils import setup_logging, ensure_directories

# Load environment variables from .env file
load_dotenv()


app = typer.Typer(
    name="trends-interest",
    help="Google Trends interest-over-time fetcher driven by a real browser",
    add_completion=False
)


@app.command()
def main(
    keywords: List[str] = typer.Argument(
        ...,
        help="Keywords to fetch, queried one at a time"
    ),
    download_dir: str = typer.Option(
        os.getenv("TRENDS_DOWNLOAD_DIR", "./downloads"),
        "--download-dir",
        help="Directory the browser saves exports into (env: TRENDS_DOWNLOAD_DIR)"
    ),
    headless: bool = typer.Option(
        True,
        "--headless/--no-headless",
        help="Run browser in headless mode"
    ),
    timeout: int = typer.Option(
        30,
        "--timeout",
        help="Page navigation timeout in seconds"
    ),
    ui_timeout_ms: int = typer.Option(
        20000,
        "--ui-timeout-ms",
        help="How long to wait for the export button to become visible"
    ),
    download_timeout_ms: int = typer.Option(
        10000,
        "--download-timeout-ms",
        help="How long to wait for the exported file"
    ),
    poll_interval_ms: int = typer.Option(
        100,
        "--poll-interval-ms",
        help="How often to check the download directory"
    ),
    proxy: Optional[str] = typer.Option(
        None,
        "--proxy",
        help="Proxy URL (e.g., 'http://proxy:8080')"
    ),
    out: Optional[str] = typer.Option(
        None,
        "--out",
        help="Output file path (default: auto-generated)"
    ),
    format: str = typer.Option(
        "json",
        "--format",
        help="Output format: json, csv, parquet"
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
    log_file: Optional[str] = typer.Option(
        None,
        "--log-file",
        help="Log file path (default: logs only to stdout)"
    )
):
    """
    Fetch monthly Google Trends interest (US, all time) for keywords.

    Examples:

      # One keyword, JSON output
      python trends_interest.py rust

      # Several keywords into one CSV
      python trends_interest.py rust golang zig --format=csv --out=./out/langs.csv

      # Watch the browser while it works
      python trends_interest.py rust --no-headless --log-level=DEBUG
    """

    setup_logging(log_level, log_file)
    ensure_directories(download_dir)

    try:
        format_enum = OutputFormat(format)
    except ValueError as e:
        print(f"❌ Invalid parameter value: {e}")
        raise typer.Exit(1)

    params = FetchParams(
        download_dir=download_dir,
        headless=headless,
        timeout=timeout,
        ui_timeout_ms=ui_timeout_ms,
        download_timeout_ms=download_timeout_ms,
        poll_interval_ms=poll_interval_ms,
        proxy=proxy,
        out=out,
        format=format_enum
    )

    try:
        print(f"Starting Google Trends fetcher...")
        print(f"Keywords: {', '.join(keywords)}")
        print(f"Mode: {'Headless' if headless else 'Headed'} browser\n")

        start_time = time.time()
        reports, errors = asyncio.run(fetch_keywords(keywords, params))
        duration = time.time() - start_time

    except KeyboardInterrupt:
        print(f"\n⚠️  Fetching interrupted by user")
        raise typer.Exit(130)
    except Exception as e:
        print(f"\n❌ Fetching failed: {e}")
        _save_error_reports([ErrorReport(stage="main_execution", message=str(e))])
        raise typer.Exit(1)

    if errors:
        for error in errors:
            print(f"⚠️  {error.keyword}: {error.message}")
        _save_error_reports(errors)

    if not reports:
        print(f"\n⚠️  No keyword could be fetched")
        raise typer.Exit(1)

    output_path = params.get_output_path(keywords)
    exporter = DataExporter()

    if not exporter.export_reports(reports, output_path, params.format):
        print(f"\n❌ Failed to export data")
        raise typer.Exit(1)

    print_export_summary(reports, output_path, params.model_dump(), duration)
    print(f"\n✅ Successfully exported {len(reports)} keywords to {output_path}")

    if errors:
        raise typer.Exit(1)


def _save_error_reports(errors: List[ErrorReport], error_path: str = "./logs/error_report.json"):
    """Write error reports as a JSON array."""
    try:
        os.makedirs(os.path.dirname(error_path), exist_ok=True)
        with open(error_path, 'w', encoding='utf-8') as f:
            f.write("[\n" + ",\n".join(e.model_dump_json(indent=2) for e in errors) + "\n]\n")
        print(f"Error report saved to: {error_path}")
    except OSError as e:
        print(f"Could not save error report: {e}")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        print(f"Critical error: {e}")
        sys.exit(1)
