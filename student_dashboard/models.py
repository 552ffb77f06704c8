"""Data models for the Student Data Dashboard application."""

from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class StudentRecord(BaseModel):
    """One normalized student row, taken from a single sheet."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    title: str = ""
    first_name: str = ""
    last_name: str = ""
    status: str = "Unknown"
    year: int = 0
    gpax: float = Field(0.0, allow_inf_nan=False)
    program: str = ""
    room: str = ""
    curriculum: str = "N/A"
    academic_year: str = ""


class SkippedSheet(BaseModel):
    """A sheet left out of ingestion because required headers were missing."""
    name: str
    missing_labels: List[str]


class IngestionResult(BaseModel):
    """Records merged from every usable sheet plus the sheets that were skipped."""
    records: List[StudentRecord]
    skipped_sheets: List[SkippedSheet] = []


class StatusBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    count: int
    percentage_str: str


class GpaBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    range_label: str
    per_curriculum_counts: Dict[str, int]
    total: int
    percentage_str: str


class YearRow(BaseModel):
    """Academic year x curriculum crosstab row; total_count is "All Curriculums"."""
    model_config = ConfigDict(frozen=True)

    academic_year: str
    total_count: int
    per_curriculum_counts: Dict[str, int]
    percentage_str: str


class CurriculumTotal(BaseModel):
    model_config = ConfigDict(frozen=True)

    curriculum: str
    count: int
    percentage_str: str


class ProbationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    by_curriculum: List[Tuple[str, int]] = []


class Aggregates(BaseModel):
    """Every dashboard aggregate computed from one record set."""
    model_config = ConfigDict(frozen=True)

    total_records: int
    mean_gpax: float
    unique_curriculums: List[str]
    status_distribution: List[StatusBucket]
    gpa_histogram: List[GpaBucket]
    year_crosstab: List[YearRow]
    curriculum_totals: List[CurriculumTotal]
    probation: ProbationSummary


class DataTableView(BaseModel):
    """Plain tabular view of one aggregate, as shown behind "View Data"."""
    title: str
    headers: List[str]
    rows: List[List[Union[str, int]]]


class Paragraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["paragraph"] = "paragraph"
    text: str


class Table(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["table"] = "table"
    headers: List[str]
    rows: List[List[str]]


ContentBlock = Annotated[Union[Paragraph, Table], Field(discriminator="kind")]


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    file_name: str
    record_count: int
    skipped_sheets: List[SkippedSheet]
    aggregates: Aggregates


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1)


class AskResponse(BaseModel):
    answer: str
    blocks: List[ContentBlock]
    context_records: int
    truncated: bool


class ExtractRequest(BaseModel):
    text: str


class ExtractResponse(BaseModel):
    blocks: List[ContentBlock]


class DatasetInfo(BaseModel):
    file_name: Optional[str]
    record_count: int
    records: List[StudentRecord]
    skipped_sheets: List[SkippedSheet]
