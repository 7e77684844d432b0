"""API integration tests for the Ledger Import API."""

import time

from fastapi.testclient import TestClient

from main import app

HTTP_200_OK = 200
HTTP_201_CREATED = 201
HTTP_400_BAD_REQUEST = 400
HTTP_401_UNAUTHORIZED = 401
HTTP_404_NOT_FOUND = 404
OWNER_HEADERS = {"X-Owner-Id": "api-owner"}
CSV_CONTENT = (
    "Date,Description,Amount,Category,Vendor\n"
    "2024-01-01,Train ticket,$45.00,Travel,Rail Co\n"
    "2024-01-02,Lunch,12.50,Food,Cafe\n"
    ",,,,\n"
    "2024-01-03,Dinner,30,food,cafe\n"
)
MAPPING = {
    "Date": "date",
    "Description": "description",
    "Amount": "amount",
    "Category": "category",
    "Vendor": "vendor",
}
ROWS = [
    {"Date": "2024-01-01", "Description": "Train ticket", "Amount": "$45.00", "Category": "Travel", "Vendor": "Rail"},
    {"Date": "2024-01-02", "Description": "Lunch", "Amount": 12.5, "Category": "Food", "Vendor": "Cafe"},
    {"Date": "", "Description": "", "Amount": "", "Category": "", "Vendor": ""},
]


def _wait_for(client: TestClient, job_id: str, headers: dict = OWNER_HEADERS) -> dict:
    for _ in range(50):
        response = client.get(f"/imports/{job_id}", headers=headers)
        if response.status_code != HTTP_200_OK:
            msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
            raise AssertionError(msg)
        job = response.json()
        if job["status"] in ("completed", "failed", "cancelled"):
            return job
        time.sleep(0.1)
    msg = f"Job {job_id} did not finish"
    raise AssertionError(msg)


def test_health() -> None:
    """Test the /health endpoint returns status ok."""
    with TestClient(app) as client:
        response = client.get("/health")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if response.json() != {"status": "ok"}:
        msg = f"Expected response {{'status': 'ok'}}, got {response.json()}"
        raise AssertionError(msg)


def test_scalar_docs() -> None:
    """Test the /scalar endpoint returns OpenAPI docs."""
    with TestClient(app) as client:
        response = client.get("/scalar")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if "openapi" not in response.text:
        msg = "Expected 'openapi' in response text"
        raise AssertionError(msg)


def test_owner_header_required() -> None:
    """Requests without X-Owner-Id are rejected."""
    with TestClient(app) as client:
        response = client.get("/imports")
    if response.status_code != HTTP_401_UNAUTHORIZED:
        msg = f"Expected status {HTTP_401_UNAUTHORIZED}, got {response.status_code}"
        raise AssertionError(msg)


def test_preview_csv() -> None:
    """Preview detects the mapping and skips blank rows."""
    files = {"file": ("statement.csv", CSV_CONTENT, "text/csv")}
    with TestClient(app) as client:
        response = client.post("/imports/preview", files=files, headers=OWNER_HEADERS)
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}: {response.text}"
        raise AssertionError(msg)
    body = response.json()
    if body["total_rows"] != 3 or body["detected_mapping"].get("amount") != "Amount":  # noqa: PLR2004
        msg = f"Unexpected preview: {body}"
        raise AssertionError(msg)


def test_preview_rejects_unsupported_file() -> None:
    """Only CSV and Excel uploads are accepted."""
    files = {"file": ("statement.pdf", b"%PDF-1.4", "application/pdf")}
    with TestClient(app) as client:
        response = client.post("/imports/preview", files=files, headers=OWNER_HEADERS)
    if response.status_code != HTTP_400_BAD_REQUEST:
        msg = f"Expected status {HTTP_400_BAD_REQUEST}, got {response.status_code}"
        raise AssertionError(msg)


def test_validate_endpoint() -> None:
    """Validation reports per-row errors and returns mapped rows."""
    rows = [*ROWS, {"Date": "13/13/2024", "Description": "Bad", "Amount": "-1", "Category": "", "Vendor": ""}]
    with TestClient(app) as client:
        response = client.post(
            "/imports/expense/validate", json={"data": rows, "mapping": MAPPING}, headers=OWNER_HEADERS
        )
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}: {response.text}"
        raise AssertionError(msg)
    body = response.json()
    if body["validation"]["is_valid"] or {e["row"] for e in body["validation"]["errors"]} != {5}:
        msg = f"Unexpected validation: {body['validation']}"
        raise AssertionError(msg)
    if body["total_rows"] != 3 or body["mapped_rows"][1]["amount"] != "12.5":  # noqa: PLR2004
        msg = f"Unexpected mapped rows: {body['mapped_rows']}"
        raise AssertionError(msg)


def test_import_requires_mappings() -> None:
    """Missing amount/description mappings are a bad request."""
    with TestClient(app) as client:
        response = client.post(
            "/imports/income", json={"data": ROWS, "mapping": {"Date": "date"}}, headers=OWNER_HEADERS
        )
    if response.status_code != HTTP_400_BAD_REQUEST:
        msg = f"Expected status {HTTP_400_BAD_REQUEST}, got {response.status_code}"
        raise AssertionError(msg)


def test_empty_data_is_bad_request() -> None:
    """An empty row list is rejected by both the import and the validation routes."""
    cases = {
        "/imports/income": "No data provided for import",
        "/imports/income/validate": "No data provided for validation",
    }
    with TestClient(app) as client:
        for path, detail in cases.items():
            response = client.post(path, json={"data": [], "mapping": MAPPING}, headers=OWNER_HEADERS)
            if response.status_code != HTTP_400_BAD_REQUEST or response.json()["detail"] != detail:
                msg = f"Expected 400 {detail!r} from {path}, got {response.status_code}: {response.text}"
                raise AssertionError(msg)


def test_import_rejects_invalid_rows_when_not_skipping() -> None:
    """With skip_invalid_rows false, invalid data fails up front."""
    rows = [{**ROWS[0], "Amount": "0"}]
    payload = {"data": rows, "mapping": MAPPING, "options": {"skip_invalid_rows": False}}
    with TestClient(app) as client:
        response = client.post("/imports/expense", json=payload, headers=OWNER_HEADERS)
    if response.status_code != HTTP_400_BAD_REQUEST:
        msg = f"Expected status {HTTP_400_BAD_REQUEST}, got {response.status_code}"
        raise AssertionError(msg)


def test_import_job_lifecycle() -> None:
    """Start a job, poll it to completion, then list and cancel it."""
    with TestClient(app) as client:
        response = client.post("/imports/expense", json={"data": ROWS, "mapping": MAPPING}, headers=OWNER_HEADERS)
        if response.status_code != HTTP_201_CREATED:
            msg = f"Expected status {HTTP_201_CREATED}, got {response.status_code}: {response.text}"
            raise AssertionError(msg)
        job_id = response.json().get("job_id")
        if not job_id or response.json()["total_rows"] != 2:  # noqa: PLR2004
            msg = f"Unexpected response: {response.json()}"
            raise AssertionError(msg)

        job = _wait_for(client, job_id)
        if job["status"] != "completed" or job["results"]["created"] != 2 or job["results"]["skipped"] != 1:  # noqa: PLR2004
            msg = f"Unexpected job: {job}"
            raise AssertionError(msg)

        other = client.get(f"/imports/{job_id}", headers={"X-Owner-Id": "someone-else"})
        if other.status_code != HTTP_404_NOT_FOUND:
            msg = f"Expected status {HTTP_404_NOT_FOUND}, got {other.status_code}"
            raise AssertionError(msg)

        listed = client.get("/imports", headers=OWNER_HEADERS).json()
        if job_id not in [item["id"] for item in listed]:
            msg = "Expected the job in the listing"
            raise AssertionError(msg)

        cancel = client.post(f"/imports/{job_id}/cancel", headers=OWNER_HEADERS)
        if cancel.status_code != HTTP_200_OK or cancel.json() != {"cancelled": False}:
            msg = f"Unexpected cancel response: {cancel.status_code} {cancel.text}"
            raise AssertionError(msg)


def test_unknown_job() -> None:
    """Unknown job ids are 404."""
    with TestClient(app) as client:
        response = client.get("/imports/does-not-exist", headers=OWNER_HEADERS)
    if response.status_code != HTTP_404_NOT_FOUND:
        msg = f"Expected status {HTTP_404_NOT_FOUND}, got {response.status_code}"
        raise AssertionError(msg)
