"""FastAPI endpoints for the ledger import API.

This module defines the routes for previewing uploaded spreadsheets,
validating mapped rows, starting import jobs, tracking and cancelling them,
and health checks. The caller's identity comes from the ``X-Owner-Id`` header.
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile
from pydantic import BaseModel, Field, field_validator

from ledger_import.api.dependencies import get_import_service, get_owner_id
from ledger_import.core.exceptions import JobNotFoundError, MappingError, ParseError, StructuralError
from ledger_import.core.models import (
    ImportJob,
    ImportOptions,
    ImportPreview,
    MappedRow,
    RecordType,
    SemanticField,
    ValidationResult,
)
from ledger_import.core.utils import get_logger
from ledger_import.services.import_service import ImportService
from ledger_import.services.validator import map_rows

router = APIRouter()
logger = get_logger("ledger-import.api")

SAMPLE_ROWS = 5
JOB_ID_EXAMPLE = "123e4567-e89b-12d3-a456-426614174000"


class RowsPayload(BaseModel):
    """Parsed rows plus the confirmed column -> field mapping."""

    data: list[dict[str, str]]
    mapping: dict[str, SemanticField]

    @field_validator("data", mode="before")
    @classmethod
    def _stringify_cells(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        return [
            {str(key): "" if cell is None else str(cell) for key, cell in row.items()} if isinstance(row, dict) else row
            for row in value
        ]


class ValidateRequest(RowsPayload):
    """Body of a validation request."""

    date_format: str | None = None


class ImportRequest(RowsPayload):
    """Body of an import request."""

    options: ImportOptions = Field(default_factory=ImportOptions)


class ValidateResponse(BaseModel):
    """Validation report plus a few rows as they will be read."""

    validation: ValidationResult
    mapped_rows: list[MappedRow]
    total_rows: int


class ImportStarted(BaseModel):
    """Acknowledgement of a newly created import job."""

    job_id: str
    total_rows: int
    validation: ValidationResult


def _require_references(record_type: RecordType, request: ImportRequest) -> None:
    """Expenses need somewhere to put their category or vendor."""
    if record_type is not RecordType.EXPENSE:
        return
    targets = set(request.mapping.values())
    if SemanticField.CATEGORY in targets or SemanticField.VENDOR in targets:
        return
    if request.options.create_categories or request.options.create_vendors:
        return
    raise HTTPException(400, "Expense imports need a category or vendor column, or auto-creation enabled")


async def _owned_job(service: ImportService, job_id: str, owner_id: str) -> ImportJob:
    try:
        job = await service.get_status(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(404, "Import job not found") from exc
    if job.owner_id != owner_id:
        raise HTTPException(404, "Import job not found")
    return job


@router.post(
    "/imports/preview",
    response_model=ImportPreview,
    summary="Preview a spreadsheet and suggest a field mapping",
    description=(
        "Upload a CSV or Excel file. The server parses it, suggests which column holds each ledger "
        "field and returns the first rows. Nothing is stored.\n\n"
        "**Request:**\n"
        "- Content-Type: multipart/form-data\n"
        "- Form field: `file` (.csv, .xlsx or .xls)\n\n"
        "**Response:**\n"
        "- 200 OK: headers, detected mapping, preview rows and total row count.\n"
        "- 400 Bad Request: unsupported or unreadable file."
    ),
    response_description="Headers, detected mapping and preview rows.",
    responses={
        400: {
            "description": "File could not be parsed.",
            "content": {
                "application/json": {"example": {"detail": "Unsupported file format. Please use CSV or Excel files."}}
            },
        },
    },
)
async def preview_import(
    file: UploadFile,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> ImportPreview:
    """Parse an uploaded file and return a mapping suggestion."""
    logger.info(f"Received preview request from {owner_id}: filename={file.filename}")
    data = await file.read()
    try:
        return await service.preview_import(data, file.filename or "")
    except ParseError as exc:
        logger.warning(f"Rejected file {file.filename}: {exc}")
        raise HTTPException(400, str(exc)) from exc


@router.post(
    "/imports/{record_type}/validate",
    response_model=ValidateResponse,
    summary="Validate mapped rows without importing them",
    description=(
        "Check rows against the confirmed mapping and report errors and warnings per row.\n\n"
        "**Path parameter:**\n"
        "- `record_type`: `income` or `expense`.\n\n"
        "**Response:**\n"
        "- 200 OK: validation report and the first mapped rows.\n"
        "- 400 Bad Request: required mappings are missing or no rows were sent."
    ),
    response_description="Validation report.",
)
async def validate_import(
    record_type: RecordType,
    request: ValidateRequest,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> ValidateResponse:
    """Validate rows under a mapping."""
    if not request.data:
        raise HTTPException(400, "No data provided for validation")
    try:
        validation = service.validate(request.data, request.mapping, record_type, request.date_format)
    except MappingError as exc:
        raise HTTPException(400, str(exc)) from exc
    mapped = map_rows(request.data, request.mapping, record_type)
    logger.info(
        f"Validated {len(mapped)} {record_type} rows for {owner_id}: "
        f"{len(validation.errors)} errors, {len(validation.warnings)} warnings"
    )
    return ValidateResponse(validation=validation, mapped_rows=mapped[:SAMPLE_ROWS], total_rows=len(mapped))


@router.post(
    "/imports/{record_type}",
    status_code=201,
    response_model=ImportStarted,
    summary="Start an import job",
    description=(
        "Create a background job that imports the rows as income or expense records. "
        "Returns a job_id that can be used to track progress or cancel the job.\n\n"
        "**Path parameter:**\n"
        "- `record_type`: `income` or `expense`.\n\n"
        "**Response:**\n"
        "- 201 Created: `{ 'job_id': '<uuid>', 'total_rows': n, 'validation': {...} }`.\n"
        "- 400 Bad Request: required mappings are missing, no rows were sent, or rows are invalid and "
        "`skip_invalid_rows` is false."
    ),
    response_description="Job created. Returns job_id.",
    responses={
        201: {
            "description": "Job created.",
            "content": {"application/json": {"example": {"job_id": JOB_ID_EXAMPLE, "total_rows": 250}}},
        },
        400: {
            "description": "Mapping or data rejected.",
            "content": {"application/json": {"example": {"detail": "Missing required field mappings: amount"}}},
        },
        503: {"description": "Storage unavailable."},
    },
)
async def start_import(
    record_type: RecordType,
    request: ImportRequest,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> ImportStarted:
    """Validate the request and start an import job."""
    logger.info(f"Received {record_type} import request from {owner_id}: {len(request.data)} rows")
    if not request.data:
        raise HTTPException(400, "No data provided for import")
    _require_references(record_type, request)
    try:
        validation = service.validate(request.data, request.mapping, record_type, request.options.date_format)
        if not validation.is_valid and not request.options.skip_invalid_rows:
            raise HTTPException(
                400,
                {
                    "message": "Validation failed and invalid rows are not being skipped",
                    "errors": [issue.model_dump() for issue in validation.errors],
                },
            )
        job_id = await service.start_import_job(request.data, request.mapping, record_type, owner_id, request.options)
    except MappingError as exc:
        raise HTTPException(400, str(exc)) from exc
    except StructuralError as exc:
        logger.exception("Error in start_import")
        raise HTTPException(503, "Storage unavailable") from exc
    job = await service.get_status(job_id)
    return ImportStarted(job_id=job_id, total_rows=job.total_rows, validation=validation)


@router.get(
    "/imports/{job_id}",
    response_model=ImportJob,
    summary="Get import job status",
    description=(
        "Check progress of an import job.\n\n"
        "**Path parameter:**\n"
        "- `job_id`: The identifier returned when the job was started.\n\n"
        "**Response:**\n"
        "- 200 OK: status, row counters, percentage, results, errors and warnings.\n"
        "- 404 Not Found: the job does not exist or belongs to someone else."
    ),
    response_description="Job snapshot.",
    responses={
        404: {
            "description": "Job not found.",
            "content": {"application/json": {"example": {"detail": "Import job not found"}}},
        },
    },
)
async def get_import_status(
    job_id: str,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> ImportJob:
    """Get the status of a job."""
    return await _owned_job(service, job_id, owner_id)


@router.post(
    "/imports/{job_id}/cancel",
    summary="Cancel an import job",
    description=(
        "Request cancellation of a pending or running job. A batch already in progress is "
        "allowed to finish; its rows stay imported.\n\n"
        "**Response:**\n"
        "- 200 OK: `{ 'cancelled': true }` if the job was still active, otherwise false.\n"
        "- 404 Not Found: the job does not exist or belongs to someone else."
    ),
    response_description="Whether the job was cancelled.",
    responses={
        200: {"description": "Cancellation outcome.", "content": {"application/json": {"example": {"cancelled": True}}}},
    },
)
async def cancel_import(
    job_id: str,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> dict:
    """Cancel a job that has not reached a terminal status."""
    await _owned_job(service, job_id, owner_id)
    return {"cancelled": await service.cancel_import_job(job_id)}


@router.get(
    "/imports",
    response_model=list[ImportJob],
    summary="List recent import jobs",
    description="Return the caller's most recent import jobs, newest first.",
    response_description="Recent jobs.",
)
async def list_imports(
    limit: int | None = None,
    service: ImportService = Depends(get_import_service),
    owner_id: str = Depends(get_owner_id),
) -> list[ImportJob]:
    """List the caller's recent jobs."""
    return await service.list_jobs(owner_id, limit)


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
