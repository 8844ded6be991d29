"""
Core data models for the behavior store.

Field names serialize in camelCase so stored values and export documents
keep the shape the extension surfaces already read and write.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DATE_KEY_LENGTH = 10


def is_date_key(value: object) -> bool:
    """Return True for a zero-padded ISO calendar date such as ``2025-01-31``."""
    if not isinstance(value, str) or len(value) != DATE_KEY_LENGTH:
        return False
    if value[4] != "-" or value[7] != "-":
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _check_date_key(value: str) -> str:
    if not is_date_key(value):
        msg = f"expected a YYYY-MM-DD date, got {value!r}"
        raise ValueError(msg)
    return value


DateKey = Annotated[str, AfterValidator(_check_date_key)]


class StoreModel(BaseModel):
    """Base for every persisted record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class BehaviorType(str, Enum):
    """Behaviors the detection engine reports."""

    DOOMSCROLLING = "doomscrolling"
    IMPULSIVE_SHOPPING = "impulsive-shopping"
    EXCESSIVE_BROWSING = "excessive-browsing"
    MULTITASKING = "multitasking"
    PRODUCTIVE_WORK = "productive-work"
    RESEARCH_MODE = "research-mode"
    DISTRACTION = "distraction"
    FOCUS_SESSION = "focus-session"


class SiteCategory(str, Enum):
    """Category labels assigned to a domain."""

    WORK = "work"
    SOCIAL = "social"
    NEWS = "news"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    RESEARCH = "research"
    OTHER = "other"


class Mood(str, Enum):
    """Optional mood attached to a journal entry."""

    GREAT = "great"
    GOOD = "good"
    OKAY = "okay"
    CHALLENGING = "challenging"


class DailyMetric(StoreModel):
    """Aggregated activity for one calendar day. Times are in milliseconds."""

    date: DateKey = Field(..., description="Calendar day (YYYY-MM-DD), primary key")
    total_time: int = Field(..., ge=0, description="Total active time")
    productive_time: int = Field(..., ge=0, description="Time on productive sites")
    distracted_time: int = Field(..., ge=0, description="Time on distracting sites")
    interventions: int = Field(..., ge=0, description="Nudges delivered that day")
    sites_visited: int = Field(default=0, ge=0, description="Distinct sites visited")
    tabs_switched: int = Field(default=0, ge=0, description="Tab switches")


class BehaviorPattern(StoreModel):
    """One detected behavior episode."""

    id: str = Field(..., min_length=1, description="Globally unique episode id")
    type: BehaviorType = Field(..., description="Detected behavior")
    start_time: int = Field(..., ge=0, description="Episode start (epoch ms), immutable")
    duration: int = Field(..., ge=0, description="Episode length in milliseconds")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Detector confidence")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form detector context")


class SiteActivity(StoreModel):
    """Cumulative activity for one domain. Merging is the caller's job."""

    domain: str = Field(..., min_length=1, description="Domain, primary key")
    url: str = Field(default="", description="Last visited URL")
    title: str = Field(default="", description="Last seen page title")
    visit_count: int = Field(..., ge=0, description="Number of visits")
    total_time: int = Field(..., ge=0, description="Cumulative time on the domain (ms)")
    last_visit: int = Field(..., ge=0, description="Last-seen timestamp (epoch ms)")
    category: SiteCategory | None = Field(default=None, description="Category label")
    favicon: str | None = Field(default=None, description="Favicon URL")


class ReportPeriod(StoreModel):
    """Time span a report summarizes (epoch ms)."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)


class Report(StoreModel):
    """Generated behavior summary. Immutable once written."""

    id: str = Field(..., min_length=1, description="Report id, primary key")
    generated_at: int = Field(..., ge=0, description="Generation time (epoch ms)")
    period: ReportPeriod = Field(..., description="Period covered")
    summary: dict[str, Any] = Field(default_factory=dict, description="Aggregate figures")
    insights: list[str] = Field(default_factory=list, description="Insight sentences")
    recommendations: list[str] = Field(default_factory=list, description="Suggested actions")
    charts: dict[str, Any] = Field(default_factory=dict, description="Chart series")


class DomainTime(StoreModel):
    """Time spent on one domain within a daily report."""

    domain: str
    time: int = Field(..., ge=0)
    category: str = "other"


class Insight(StoreModel):
    """A single insight line inside a daily report."""

    type: str
    description: str
    severity: str = Field(default="low", pattern="^(low|medium|high)$")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: int = Field(default=0, ge=0)


class DailyReport(StoreModel):
    """Daily behavioral report kept in the reports-by-date blob."""

    id: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0, description="Generation time (epoch ms)")
    date: DateKey = Field(..., description="Day the report covers, map key")
    productivity_score: float = Field(..., ge=0.0, le=100.0)
    total_time: int = Field(..., ge=0)
    productive_time: int = Field(..., ge=0)
    distracted_time: int = Field(..., ge=0)
    top_domains: list[DomainTime] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    doomscroll_metrics: dict[str, Any] = Field(default_factory=dict)
    shopping_metrics: dict[str, Any] = Field(default_factory=dict)


class JournalEntry(StoreModel):
    """User-authored note. Append-only within its date bucket."""

    id: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0, description="Creation time (epoch ms)")
    date: DateKey = Field(..., description="Bucket the entry is appended to")
    note: str = Field(..., description="Free text")
    mood: Mood | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)


class Preferences(StoreModel):
    """User preferences blob. Unknown keys written by other surfaces are preserved."""

    model_config = ConfigDict(extra="allow")

    data_retention_days: int = Field(default=90, ge=0)
    auto_export: bool = False
    privacy_mode: bool = False


class StorageUsage(StoreModel):
    """Bytes used against the device quota."""

    bytes_used: int = Field(..., ge=0)
    bytes_available: int
    percentage_used: float = Field(..., ge=0.0)
