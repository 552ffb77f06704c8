"""Dashboard aggregates: status, GPAX, academic year and curriculum breakdowns."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from student_dashboard.models import (
    Aggregates,
    CurriculumTotal,
    DataTableView,
    GpaBucket,
    ProbationSummary,
    StatusBucket,
    StudentRecord,
    YearRow,
)

NORMAL_STATUS = "ปกติ"
PROBATION_GPAX = 2.0
UNCATEGORIZED = "Uncategorized"

# (label, lower bound inclusive); the upper bound is the next bucket's lower bound
GPA_BUCKETS: List[Tuple[str, float]] = [
    ("< 2.0", -np.inf),
    ("2.0-2.49", 2.0),
    ("2.5-2.99", 2.5),
    ("3.0-3.49", 3.0),
    (">= 3.5", 3.5),
]

_COLUMNS = ["status", "gpax", "curriculum", "academic_year"]


def format_percentage(count: int, total: int) -> str:
    """count/total as a percentage with exactly two decimals, rounded half-up."""
    if total <= 0:
        return "0.00"
    pct = Decimal(count) * Decimal(100) / Decimal(total)
    return str(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _or_uncategorized(series: pd.Series) -> pd.Series:
    return series.where(series.str.strip() != "", UNCATEGORIZED)


def records_frame(records: Sequence[StudentRecord]) -> pd.DataFrame:
    """
    One row per record with the columns the aggregates group on.

    Blank curriculum and academic year values are already mapped to
    "Uncategorized".
    """
    df = pd.DataFrame(
        [(r.status, r.gpax, r.curriculum, r.academic_year) for r in records],
        columns=_COLUMNS,
    )
    df["gpax"] = df["gpax"].astype(float)
    df["curriculum"] = _or_uncategorized(df["curriculum"].astype(str))
    df["academic_year"] = _or_uncategorized(df["academic_year"].astype(str))
    return df


def unique_curriculums(df: pd.DataFrame) -> List[str]:
    return sorted(df["curriculum"].unique().tolist())


def _counts_in_order(series: pd.Series) -> pd.Series:
    # groupby(sort=False) keeps first-appearance order of the keys
    return series.groupby(series, sort=False).size()


def _sorted_by_count(counts: pd.Series) -> pd.Series:
    return counts.sort_values(ascending=False, kind="stable")


def status_distribution(df: pd.DataFrame) -> List[StatusBucket]:
    total = len(df)
    return [
        StatusBucket(name=name, count=int(count), percentage_str=format_percentage(int(count), total))
        for name, count in _counts_in_order(df["status"]).items()
    ]


def gpa_bucket_labels(gpax: pd.Series) -> pd.Series:
    """Label each GPAX value with its histogram bucket."""
    bins = [lower for _, lower in GPA_BUCKETS] + [np.inf]
    labels = [label for label, _ in GPA_BUCKETS]
    return pd.cut(gpax, bins=bins, labels=labels, right=False)


def gpa_histogram(df: pd.DataFrame, curriculums: List[str]) -> List[GpaBucket]:
    total = len(df)
    labels = [label for label, _ in GPA_BUCKETS]
    if total == 0:
        table = pd.DataFrame(0, index=labels, columns=curriculums)
    else:
        table = pd.crosstab(gpa_bucket_labels(df["gpax"]).astype(str), df["curriculum"])
        table = table.reindex(index=labels, columns=curriculums, fill_value=0)

    buckets = []
    for label in labels:
        per_curriculum = {c: int(table.at[label, c]) for c in curriculums}
        bucket_total = sum(per_curriculum.values())
        buckets.append(GpaBucket(
            range_label=label,
            per_curriculum_counts=per_curriculum,
            total=bucket_total,
            percentage_str=format_percentage(bucket_total, total),
        ))
    return buckets


def year_crosstab(df: pd.DataFrame, curriculums: List[str]) -> List[YearRow]:
    total = len(df)
    if total == 0:
        return []
    table = pd.crosstab(df["academic_year"], df["curriculum"])
    years = sorted(table.index.tolist())
    table = table.reindex(index=years, columns=curriculums, fill_value=0)

    rows = []
    for year in years:
        per_curriculum = {c: int(table.at[year, c]) for c in curriculums}
        year_total = sum(per_curriculum.values())
        rows.append(YearRow(
            academic_year=year,
            total_count=year_total,
            per_curriculum_counts=per_curriculum,
            percentage_str=format_percentage(year_total, total),
        ))
    return rows


def curriculum_totals(df: pd.DataFrame) -> List[CurriculumTotal]:
    total = len(df)
    counts = _sorted_by_count(_counts_in_order(df["curriculum"]))
    return [
        CurriculumTotal(curriculum=name, count=int(count), percentage_str=format_percentage(int(count), total))
        for name, count in counts.items()
    ]


def probation_summary(df: pd.DataFrame, normal_status: str = NORMAL_STATUS) -> ProbationSummary:
    """
    Students on probation: GPAX below 2.0 while still in normal status.

    Students who have already left (any other status) are not counted even
    with a low GPAX.
    """
    subset = df[(df["gpax"] < PROBATION_GPAX) & (df["status"] == normal_status)]
    counts = _sorted_by_count(_counts_in_order(subset["curriculum"]))
    return ProbationSummary(
        total=len(subset),
        by_curriculum=[(name, int(count)) for name, count in counts.items()],
    )


def mean_gpax(df: pd.DataFrame) -> float:
    if df.empty:
        return 0.0
    return float(df["gpax"].mean())


def aggregate(records: Sequence[StudentRecord], normal_status: str = NORMAL_STATUS) -> Aggregates:
    """
    Compute every dashboard aggregate for ``records``.

    Pure: the same input always gives the same output and nothing is cached.
    An empty record set gives zero counts rather than an error.
    """
    df = records_frame(records)
    curriculums = unique_curriculums(df)
    return Aggregates(
        total_records=len(df),
        mean_gpax=mean_gpax(df),
        unique_curriculums=curriculums,
        status_distribution=status_distribution(df),
        gpa_histogram=gpa_histogram(df, curriculums),
        year_crosstab=year_crosstab(df, curriculums),
        curriculum_totals=curriculum_totals(df),
        probation=probation_summary(df, normal_status),
    )


def data_tables(aggregates: Aggregates) -> Dict[str, DataTableView]:
    """Flat tables behind each dashboard chart's "View Data" button."""
    count_headers = ["Number of Students", "Percentage"]
    return {
        "academic_year": DataTableView(
            title="Students per Academic Year Data",
            headers=["Academic Year"] + count_headers,
            rows=[[r.academic_year, r.total_count, f"{r.percentage_str}%"] for r in aggregates.year_crosstab],
        ),
        "gpax": DataTableView(
            title="GPAX Distribution Data",
            headers=["GPAX Range"] + count_headers,
            rows=[[b.range_label, b.total, f"{b.percentage_str}%"] for b in aggregates.gpa_histogram],
        ),
        "status": DataTableView(
            title="Student Status Overview Data",
            headers=["Status"] + count_headers,
            rows=[[s.name, s.count, f"{s.percentage_str}%"] for s in aggregates.status_distribution],
        ),
        "curriculum": DataTableView(
            title="Students per Curriculum Data",
            headers=["Curriculum"] + count_headers,
            rows=[[c.curriculum, c.count, f"{c.percentage_str}%"] for c in aggregates.curriculum_totals],
        ),
        "year_by_curriculum": DataTableView(
            title="Students per Academic Year by Curriculum",
            headers=["Academic Year", "All Curriculums"] + aggregates.unique_curriculums,
            rows=[
                [r.academic_year, r.total_count] + [r.per_curriculum_counts[c] for c in aggregates.unique_curriculums]
                for r in aggregates.year_crosstab
            ],
        ),
    }
