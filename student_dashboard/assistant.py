"""Question answering over the uploaded student data via a chat completion model."""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI

from student_dashboard.models import StudentRecord

logger = logging.getLogger(__name__)

MAX_CONTEXT_RECORDS = 500
DEFAULT_MODEL = "gpt-4o-mini"

FALLBACK_ANSWER = (
    "Sorry, I couldn't process that request. There might be an issue with "
    "the connection to the AI service."
)

INSTRUCTIONS = """You are a helpful data analyst assistant. Your task is to answer questions based strictly on the provided student data.
The data is in JSON format. Do not use any information outside of this data. If the answer cannot be found, say so.
Provide concise and accurate answers.

When you need to present data in a table, YOU MUST use Markdown table format.
For example:
| Student ID | Full Name | GPAX |
|------------|-----------|------|
| 65010001   | John Doe  | 3.50 |
| 65010002   | Jane Smith| 3.75 |

When asked to list students, provide their full name, student ID, and any other relevant information requested in a Markdown table."""


def record_to_context(record: StudentRecord) -> Dict[str, Any]:
    """Serialize a record with the camelCase keys the prompt examples use."""
    return {
        "studentId": record.student_id,
        "title": record.title,
        "firstName": record.first_name,
        "lastName": record.last_name,
        "status": record.status,
        "year": record.year,
        "gpax": record.gpax,
        "program": record.program,
        "room": record.room,
        "curriculum": record.curriculum,
        "academicYear": record.academic_year,
    }


def truncation_note(total: int, max_records: int) -> str:
    if total <= max_records:
        return ""
    return (
        f"Note: The provided data is a subset of a larger dataset ({total} total records) "
        f"and only the first {max_records} records are being analyzed."
    )


def build_context(records: Sequence[StudentRecord], max_records: int = MAX_CONTEXT_RECORDS) -> str:
    """
    JSON dump of at most ``max_records`` records.

    When records are cut off, a note stating the full count follows the JSON so
    the model does not present subset figures as totals.
    """
    subset = [record_to_context(r) for r in records[:max_records]]
    context = json.dumps(subset, ensure_ascii=False, indent=2)
    note = truncation_note(len(records), max_records)
    if note:
        context = f"{context}\n\n{note}"
    return context


def build_prompt(question: str, records: Sequence[StudentRecord],
                 max_records: int = MAX_CONTEXT_RECORDS) -> str:
    return (
        f"{INSTRUCTIONS}\n\n"
        f"Here is the student data:\n"
        f"{build_context(records, max_records)}\n\n"
        f'User\'s question: "{question}"\n'
    )


def get_client() -> OpenAI:
    """OpenAI-compatible client configured from OPENAI_API_KEY / OPENAI_BASE_URL."""
    base_url = os.getenv("OPENAI_BASE_URL") or None
    return OpenAI(api_key=os.getenv("OPENAI_API_KEY"), base_url=base_url)


def ask(
    question: str,
    records: Sequence[StudentRecord],
    client: Optional[Any] = None,
    model: Optional[str] = None,
    max_records: int = MAX_CONTEXT_RECORDS,
) -> str:
    """
    Ask the model a question about ``records`` and return its answer text.

    Never raises: connection, authentication and response-shape failures are
    logged and answered with FALLBACK_ANSWER.
    """
    try:
        if client is None:
            client = get_client()
        response = client.chat.completions.create(
            model=model or os.getenv("ASSISTANT_MODEL", DEFAULT_MODEL),
            messages=[{"role": "user", "content": build_prompt(question, records, max_records)}],
        )
        answer = response.choices[0].message.content
    except Exception:
        logger.exception("Assistant request failed")
        return FALLBACK_ANSWER

    if not answer:
        logger.warning("Assistant returned an empty answer")
        return FALLBACK_ANSWER
    return answer


def context_size(records: List[StudentRecord], max_records: int = MAX_CONTEXT_RECORDS) -> int:
    return min(len(records), max_records)
