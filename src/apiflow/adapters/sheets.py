import json
import re
from typing import Any, Dict, List, Optional

import gspread
from gspread.utils import rowcol_to_a1
from google.auth import exceptions as google_auth_errors

from apiflow.adapter_sdk import (
    Adapter,
    AdapterError,
    ConnectionConfig,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    OperationTimeout,
    Record,
    RecordNotFound,
    UnknownAdapterError,
)
from apiflow.adapter_sdk.errors import classify_connection_message
from apiflow.common.logger import get_logger

logger = get_logger(__name__)

SHEET_URL_PATTERN = re.compile(r"/d/([a-zA-Z0-9-_]+)")
UPDATED_ROW_PATTERN = re.compile(r"![A-Z]+(\d+)")
FIRST_DATA_ROW = 2


def extract_sheet_id(value: str) -> str:
    """Accepts a bare spreadsheet key or a docs.google.com URL."""
    match = SHEET_URL_PATTERN.search(value or "")
    return match.group(1) if match else (value or "").strip()


def _api_status(exc: gspread.exceptions.APIError) -> Optional[int]:
    code = getattr(exc, "code", None)
    if code is None and getattr(exc, "response", None) is not None:
        code = exc.response.status_code
    return code


class SheetsAdapter(Adapter):
    """Google Sheets spreadsheet where every worksheet is a table.

    The first row holds the column names. A record's ``id`` is its 1-based
    row number, so the first data row has id 2. Deleting a record clears its
    row instead of removing it, which keeps the ids of the other rows stable.
    """

    engine_type = "sheets"
    value_input_option = "USER_ENTERED"

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config)
        self.spreadsheet_id = extract_sheet_id(config.sheet_id or "")
        self.client: Optional[gspread.Client] = None
        self.spreadsheet = None

    def connect(self) -> "SheetsAdapter":
        if self.spreadsheet is not None:
            return self
        try:
            info = json.loads(self.config.secret("service_account") or "{}")
            self.client = gspread.service_account_from_dict(info)
            self.spreadsheet = self.client.open_by_key(self.spreadsheet_id)
        except ValueError as e:
            self.disconnect()
            raise ConnectionFailed("Service account is not valid JSON", kind=ConnectionFailureKind.AUTH) from e
        except Exception as e:
            self.disconnect()
            error = self._classify(e)
            if not isinstance(error, ConnectionFailed):
                error = ConnectionFailed(error.detail, kind=classify_connection_message(str(e)))
            logger.error(f"Failed to open spreadsheet for {self}: {error.detail}")
            raise error from e
        logger.info(f"Opened spreadsheet for {self}")
        return self

    def disconnect(self) -> None:
        self.spreadsheet = None
        self.client = None

    def _worksheet(self, table: str):
        self.check_table(table)
        if self.spreadsheet is None:
            raise ConnectionFailed(f"Not connected to {self}")
        self.touch()
        try:
            return self.spreadsheet.worksheet(table)
        except Exception as e:
            self._raise_classified(e)

    @staticmethod
    def _row_number(id: Any) -> int:
        try:
            row = int(id)
        except (TypeError, ValueError):
            raise RecordNotFound(f"Row id must be a number, got {id!r}")
        if row < FIRST_DATA_ROW:
            raise RecordNotFound(f"Row {row} is not a data row")
        return row

    @staticmethod
    def _to_record(headers: List[str], values: List[Any], row: int) -> Optional[Record]:
        if not any(str(v).strip() for v in values):
            return None
        record: Dict[str, Any] = {}
        for i, header in enumerate(headers):
            if header:
                record[header] = values[i] if i < len(values) else ""
        record["id"] = row
        return record

    @staticmethod
    def _check_known(headers: List[str], record: Record) -> Dict[str, Any]:
        fields = {k: v for k, v in record.items() if k != "id"}
        unknown = [k for k in fields if k not in headers]
        if unknown:
            raise ConstraintViolation(f"Unknown columns: {', '.join(sorted(unknown))}")
        return fields

    def list_tables(self) -> List[str]:
        if self.spreadsheet is None:
            raise ConnectionFailed(f"Not connected to {self}")
        try:
            return [ws.title for ws in self.spreadsheet.worksheets()]
        except Exception as e:
            self._raise_classified(e)

    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        ws = self._worksheet(table)
        limit = self.clamp_limit(limit)
        try:
            values = ws.get_all_values()
        except Exception as e:
            self._raise_classified(e)
        if not values:
            return []
        headers, rows = values[0], values[1:]
        records: List[Record] = []
        for offset, row_values in enumerate(rows):
            record = self._to_record(headers, row_values, offset + FIRST_DATA_ROW)
            if record is None:
                continue
            records.append(record)
            if len(records) >= limit:
                break
        return records

    def _read(self, ws, row: int):
        try:
            headers = ws.row_values(1)
            values = ws.row_values(row)
        except Exception as e:
            self._raise_classified(e)
        record = self._to_record(headers, values, row)
        if record is None:
            raise RecordNotFound(f"Row {row} is empty")
        return headers, record

    def read(self, table: str, id: Any) -> Record:
        ws = self._worksheet(table)
        _, record = self._read(ws, self._row_number(id))
        return record

    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        ws = self._worksheet(table)
        try:
            headers = ws.row_values(1)
        except Exception as e:
            self._raise_classified(e)
        if not headers:
            raise ConstraintViolation(f"Worksheet {table} has no header row")
        fields = self._check_known(headers, record)
        row_values = [fields.get(h, "") for h in headers]
        try:
            response = ws.append_row(
                row_values, value_input_option=self.value_input_option, table_range="A1"
            )
        except Exception as e:
            self._raise_classified(e)
        updated = (response or {}).get("updates", {}).get("updatedRange", "")
        match = UPDATED_ROW_PATTERN.search(updated)
        row = int(match.group(1)) if match else None
        return {**{h: fields.get(h, "") for h in headers if h}, "id": row}

    def update(self, table: str, id: Any, record: Record) -> Record:
        ws = self._worksheet(table)
        row = self._row_number(id)
        headers, current = self._read(ws, row)
        fields = self._check_known(headers, record)
        current.update(fields)
        row_values = [current.get(h, "") for h in headers]
        try:
            ws.update(
                range_name=f"A{row}:{rowcol_to_a1(row, len(headers))}",
                values=[row_values],
                value_input_option=self.value_input_option,
            )
        except Exception as e:
            self._raise_classified(e)
        return current

    def delete(self, table: str, id: Any) -> Record:
        ws = self._worksheet(table)
        row = self._row_number(id)
        headers, _ = self._read(ws, row)
        try:
            ws.batch_clear([f"A{row}:{rowcol_to_a1(row, max(len(headers), 1))}"])
        except Exception as e:
            self._raise_classified(e)
        return {"success": True, "id": row}

    def _classify(self, exc: Exception) -> AdapterError:
        if isinstance(exc, gspread.exceptions.WorksheetNotFound):
            return RecordNotFound("Worksheet does not exist")
        if isinstance(exc, gspread.exceptions.SpreadsheetNotFound):
            return ConnectionFailed("Spreadsheet not found", kind=ConnectionFailureKind.NOT_FOUND)
        if isinstance(exc, google_auth_errors.GoogleAuthError):
            return ConnectionFailed("Service account rejected", kind=ConnectionFailureKind.AUTH)
        if isinstance(exc, gspread.exceptions.APIError):
            status = _api_status(exc)
            if status in (401, 403):
                return ConnectionFailed("Access to spreadsheet denied", kind=ConnectionFailureKind.AUTH)
            if status == 404:
                return ConnectionFailed("Spreadsheet not found", kind=ConnectionFailureKind.NOT_FOUND)
            if status == 400:
                return ConstraintViolation("Values rejected by spreadsheet")
            if status in (408, 504):
                return OperationTimeout("Spreadsheet request timed out")
            return UnknownAdapterError(f"Sheets API error ({status})")
        return super()._classify(exc)
