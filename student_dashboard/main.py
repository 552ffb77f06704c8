"""FastAPI main application for the Student Data Dashboard."""

import asyncio
import csv
import logging
import os
import traceback
from io import StringIO
from typing import Dict

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from student_dashboard import assistant
from student_dashboard.analytics import NORMAL_STATUS, aggregate, data_tables
from student_dashboard.extractor import extract
from student_dashboard.models import (
    Aggregates,
    AskRequest,
    AskResponse,
    DatasetInfo,
    DataTableView,
    ExtractRequest,
    ExtractResponse,
    UploadResponse,
)
from student_dashboard.parsers import EmptyDatasetError, WorkbookReadError, ingest_workbook
from student_dashboard.store import DatasetStore

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Student Data Dashboard", version="1.0.0")

# CORS configuration
allow_origins = os.getenv('ALLOW_ORIGINS', '*').split(',')
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error_detail = str(exc)
    if os.getenv('DEBUG', 'False').lower() == 'true':
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


# Configuration
MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '10'))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024
NORMAL_STATUS_LABEL = os.getenv('NORMAL_STATUS_LABEL', NORMAL_STATUS)
MAX_CONTEXT_RECORDS = int(os.getenv('MAX_CONTEXT_RECORDS', str(assistant.MAX_CONTEXT_RECORDS)))

store = DatasetStore()

# One assistant query in flight at a time
ask_lock = asyncio.Lock()


def require_dataset() -> DatasetStore:
    if store.result is None:
        raise HTTPException(status_code=404, detail="No student data loaded. Upload an Excel file first.")
    return store


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """Upload a multi-sheet Excel workbook and replace the current dataset."""
    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE_MB}MB"
        )

    if not (file.filename or "").lower().endswith((".xlsx", ".xls")):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload an Excel file (.xlsx or .xls)"
        )

    token = store.begin()
    try:
        result = await run_in_threadpool(ingest_workbook, file_bytes)
    except EmptyDatasetError as e:
        store.abandon(token)
        raise HTTPException(status_code=400, detail=str(e))
    except WorkbookReadError as e:
        store.abandon(token)
        logger.warning("Could not read %r: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        store.abandon(token)
        raise

    if not store.commit(token, result, file.filename):
        raise HTTPException(
            status_code=409,
            detail="A newer upload replaced this file before it finished processing."
        )

    logger.info("Loaded %d records from %r", len(result.records), file.filename)
    return UploadResponse(
        success=True,
        message=f"Successfully processed {len(result.records)} students",
        file_name=file.filename,
        record_count=len(result.records),
        skipped_sheets=result.skipped_sheets,
        aggregates=aggregate(result.records, NORMAL_STATUS_LABEL),
    )


@app.get("/records", response_model=DatasetInfo)
async def get_records():
    """Get the records of the current dataset."""
    current = require_dataset()
    return DatasetInfo(
        file_name=current.file_name,
        record_count=len(current.records),
        records=current.records,
        skipped_sheets=current.result.skipped_sheets,
    )


@app.delete("/dataset")
async def clear_dataset():
    """Forget the current dataset."""
    store.clear()
    return {"success": True}


@app.get("/analytics", response_model=Aggregates)
async def get_analytics():
    """Dashboard aggregates for the current dataset."""
    return aggregate(require_dataset().records, NORMAL_STATUS_LABEL)


@app.get("/analytics/tables", response_model=Dict[str, DataTableView])
async def get_analytics_tables():
    """Tabular views of each dashboard chart."""
    return data_tables(aggregate(require_dataset().records, NORMAL_STATUS_LABEL))


@app.post("/ask", response_model=AskResponse)
async def ask_question(request: AskRequest):
    """Ask the assistant about the current dataset."""
    records = require_dataset().records
    if ask_lock.locked():
        raise HTTPException(status_code=429, detail="A question is already being answered. Please wait.")

    async with ask_lock:
        answer = await run_in_threadpool(
            assistant.ask, request.question, records, max_records=MAX_CONTEXT_RECORDS
        )

    return AskResponse(
        answer=answer,
        blocks=extract(answer),
        context_records=assistant.context_size(records, MAX_CONTEXT_RECORDS),
        truncated=len(records) > MAX_CONTEXT_RECORDS,
    )


@app.post("/extract", response_model=ExtractResponse)
async def extract_blocks(request: ExtractRequest):
    """Split arbitrary assistant text into paragraph and table blocks."""
    return ExtractResponse(blocks=extract(request.text))


@app.get("/download.csv")
async def download_csv():
    """Download the current records as CSV."""
    current = require_dataset()

    output = StringIO()
    writer = csv.writer(output)

    writer.writerow([
        'Student ID',
        'Title',
        'First Name',
        'Last Name',
        'Status',
        'Year',
        'GPAX',
        'Program',
        'Room',
        'Curriculum',
        'Academic Year'
    ])

    for record in current.records:
        writer.writerow([
            record.student_id,
            record.title,
            record.first_name,
            record.last_name,
            record.status,
            record.year,
            f"{record.gpax:.2f}",
            record.program,
            record.room,
            record.curriculum,
            record.academic_year
        ])

    output.seek(0)

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=student_records.csv"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
