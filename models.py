"""
Pydantic models and enums for the Google Trends interest-over-time fetcher.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import quote, urlencode

from pydantic import BaseModel, Field


TRENDS_HOME_URL = "https://trends.google.com"
EXPLORE_URL = "https://trends.google.com/trends/explore"


class OutputFormat(str, Enum):
    """Output file format options."""
    JSON = "json"
    CSV = "csv"
    PARQUET = "parquet"


class ExploreQuery(BaseModel):
    """A single keyword request against the explore page."""
    keyword: str = Field(description="Search keyword")
    geo: str = Field("US", description="Geographic code")
    hl: str = Field("en-US", description="Interface language")
    date_range: str = Field("all", description="Time range (all time gives monthly points)")

    class Config:
        frozen = True

    def to_url(self) -> str:
        """Build the explore page URL for this keyword."""
        query = urlencode(
            {"date": self.date_range, "geo": self.geo, "hl": self.hl, "q": self.keyword},
            quote_via=quote
        )
        return f"{EXPLORE_URL}?{query}"


class TimelinePoint(BaseModel):
    """One month of relative search interest."""
    period: date = Field(description="First day of the month")
    intensity: int = Field(description="Relative interest index (0-100)")

    class Config:
        frozen = True


class Report(BaseModel):
    """Interest over time for one keyword."""
    keyword: str = Field(description="The keyword that was queried")
    timeline: Tuple[TimelinePoint, ...] = Field(
        default_factory=tuple,
        description="Points in the order the export file lists them"
    )
    retrieved_at: datetime = Field(default_factory=datetime.now, description="When the data was retrieved")

    class Config:
        frozen = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat()
        }

    def as_pairs(self) -> List[Tuple[date, int]]:
        """Return the timeline as plain (period, intensity) tuples."""
        return [(point.period, point.intensity) for point in self.timeline]


class FetchParams(BaseModel):
    """Parameters for fetching interest over time."""
    download_dir: str = Field("./downloads", description="Directory the browser saves exports into")

    # Browser control
    headless: bool = Field(True, description="Run browser in headless mode")
    timeout: int = Field(30, description="Page navigation timeout in seconds")
    ui_timeout_ms: int = Field(20000, description="How long to wait for the export control to show up")
    download_timeout_ms: int = Field(10000, description="How long to wait for the exported file")
    poll_interval_ms: int = Field(100, description="Download directory polling interval")
    proxy: Optional[str] = Field(None, description="Proxy URL")

    # Output
    out: Optional[str] = Field(None, description="Output file path")
    format: OutputFormat = Field(OutputFormat.JSON, description="Output file format")

    def get_output_path(self, keywords: Optional[List[str]] = None) -> str:
        """Generate output file path if not specified."""
        if self.out:
            return self.out

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        label = keywords[0] if keywords else "keywords"
        label_safe = "".join(c if c.isalnum() else "_" for c in label.lower())
        extension = self.format.value

        return f"./out/interest_{label_safe}_{timestamp}.{extension}"


class ErrorReport(BaseModel):
    """Model for error reporting."""
    stage: str = Field(description="Stage where error occurred")
    message: str = Field(description="Error message")
    keyword: Optional[str] = Field(None, description="Keyword being queried, if any")
    screenshot_path: Optional[str] = Field(None, description="Path to error screenshot")
    timestamp: datetime = Field(default_factory=datetime.now, description="When error occurred")

    class Config:
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }
