"""Customer lookup in the per-unit workbooks.

A workbook is fetched fresh for every consultation and parsed into
``{sheet name: rows}``; nothing is cached. A customer is usually one sheet,
named after the CPF or the name, laid out either as label/value rows or as a
header row followed by records.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional

import httpx
import pandas as pd

from cantina_bot.config import Settings
from cantina_bot.logging_config import get_logger
from cantina_bot.services.result import (
    HTTP_ERROR,
    INVALID_WORKBOOK,
    NETWORK_ERROR,
    NOT_CONFIGURED,
    NOT_FOUND,
    Result,
)

logger = get_logger("workbook_service")

Rows = List[List[str]]
Workbook = Dict[str, Rows]

# Shortest digit run accepted as a customer identifier.
MIN_IDENTIFIER_DIGITS = 8
MULTI_VALUE_SEPARATORS = re.compile(r"[;|]")
GOOGLE_SHEET_URL = re.compile(r"https://docs\.google\.com/spreadsheets/d/([\w-]+)")


class WorkbookLookupError(Exception):
    def __init__(self, message: str, code: str):
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass
class CustomerRecord:
    name: str
    cpf: str
    debts: List[str] = field(default_factory=list)
    vouchers: List[str] = field(default_factory=list)
    credits: List[str] = field(default_factory=list)


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def _fold(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value.lower())
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def _cell(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def parse_workbook(content: bytes) -> Workbook:
    """Read every sheet of an xlsx file into lists of string cells."""
    try:
        sheets = pd.read_excel(BytesIO(content), sheet_name=None, header=None, dtype=str)
    except Exception as e:
        raise WorkbookLookupError(f"could not read workbook: {e}", INVALID_WORKBOOK) from e

    workbook: Workbook = {}
    for sheet_name, frame in sheets.items():
        rows = [[_cell(value) for value in row] for row in frame.itertuples(index=False, name=None)]
        workbook[str(sheet_name)] = [row for row in rows if any(row)]
    return workbook


def export_url(url: str) -> str:
    """Google Sheets share links are rewritten to their xlsx export."""
    match = GOOGLE_SHEET_URL.match(url)
    if match and "/export" not in url:
        return f"https://docs.google.com/spreadsheets/d/{match.group(1)}/export?format=xlsx"
    return url


def _sheet_mentions(rows: Rows, key: str) -> bool:
    """Identifiers match inside any cell; names only match a whole cell."""
    digits = only_digits(key)
    if len(digits) >= MIN_IDENTIFIER_DIGITS and any(digits in only_digits(cell) for row in rows for cell in row):
        return True
    lowered = key.strip().lower()
    return bool(lowered) and any(cell.strip().lower() == lowered for row in rows for cell in row)


def find_sheet(workbook: Workbook, key: str) -> Optional[str]:
    """Name of the sheet holding key: exact name, case-insensitive name, then content scan."""
    key = (key or "").strip()
    if not key:
        return None

    if key in workbook:
        return key

    lowered = key.lower()
    for name in workbook:
        if name.strip().lower() == lowered:
            return name

    for name, rows in workbook.items():
        if _sheet_mentions(rows, key):
            return name
    return None


def _field_for_label(label: str) -> Optional[str]:
    folded = _fold(label)
    if "nome" in folded:
        return "name"
    if "cpf" in folded:
        return "cpf"
    if "divida" in folded:
        return "debts"
    if "vale" in folded:
        return "vouchers"
    if "haver" in folded:
        return "credits"
    return None


def _split_values(value: str) -> List[str]:
    return [part.strip() for part in MULTI_VALUE_SEPARATORS.split(value) if part.strip()]


class _RecordFields:
    def __init__(self):
        self.name = ""
        self.cpf = ""
        self.lists: Dict[str, List[str]] = {"debts": [], "vouchers": [], "credits": []}

    def add(self, field_name: str, value: str) -> bool:
        value = value.strip()
        if not value:
            return False
        if field_name == "name":
            self.name = self.name or value
        elif field_name == "cpf":
            self.cpf = self.cpf or value
        else:
            self.lists[field_name].extend(_split_values(value))
        return True


def _key_value_fields(rows: Rows) -> Optional[_RecordFields]:
    fields = _RecordFields()
    found = False
    for row in rows:
        if len(row) < 2:
            continue
        field_name = _field_for_label(row[0])
        if field_name and fields.add(field_name, row[1]):
            found = True
    return fields if found else None


def _row_matches(row: List[str], columns: Dict[str, int], query: str) -> bool:
    digits = only_digits(query)
    if digits and "cpf" in columns and only_digits(row[columns["cpf"]]) == digits:
        return True
    lowered = query.strip().lower()
    return bool(lowered) and "name" in columns and row[columns["name"]].strip().lower() == lowered


def _header_table_fields(rows: Rows, queries: List[str]) -> Optional[_RecordFields]:
    if len(rows) < 2:
        return None
    header = rows[0]
    columns: Dict[str, int] = {}
    for index, label in enumerate(header):
        field_name = _field_for_label(label)
        if field_name and field_name not in columns:
            columns[field_name] = index
    if "name" not in columns:
        return None

    width = len(header)
    records = [row + [""] * (width - len(row)) for row in rows[1:]]
    named = [row for row in records if row[columns["name"]].strip()]
    if not named:
        return None

    chosen = named[0]
    for query in queries:
        match = next((row for row in named if _row_matches(row, columns, query)), None)
        if match is not None:
            chosen = match
            break

    fields = _RecordFields()
    for field_name, index in columns.items():
        fields.add(field_name, chosen[index])
    return fields


def _is_header_row(row: List[str]) -> bool:
    cells = [cell for cell in row if cell.strip()]
    labels = [_field_for_label(cell) for cell in cells]
    if not cells or None in labels or "name" not in labels:
        return False
    return "cpf" in labels or len(set(labels)) >= 3


def build_record(rows: Rows, name: str, cpf: str) -> CustomerRecord:
    """Build a record from a sheet; name/cpf fall back to the customer's input."""
    queries = [cpf, name]
    if rows and _is_header_row(rows[0]):
        fields = _header_table_fields(rows, queries) or _key_value_fields(rows)
    else:
        fields = _key_value_fields(rows) or _header_table_fields(rows, queries)
    fields = fields or _RecordFields()
    sheet_cpf = only_digits(fields.cpf) or fields.cpf
    return CustomerRecord(
        name=fields.name or name,
        cpf=sheet_cpf or cpf,
        debts=fields.lists["debts"],
        vouchers=fields.lists["vouchers"],
        credits=fields.lists["credits"],
    )


class WorkbookLookup:
    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    def source_for(self, unit_code: Optional[str]) -> Optional[str]:
        return self.settings.source_for_unit(unit_code)

    async def fetch_workbook(self, url: str) -> Workbook:
        target = export_url(url)
        try:
            response = await self._client.get(
                target, timeout=self.settings.workbook_timeout_seconds, follow_redirects=True
            )
        except httpx.HTTPError as e:
            raise WorkbookLookupError(f"workbook fetch failed: {e}", NETWORK_ERROR) from e
        if response.status_code != 200:
            raise WorkbookLookupError(f"workbook fetch returned {response.status_code}", HTTP_ERROR)
        return parse_workbook(response.content)

    async def fetch_customer_record(self, unit_code: str, identifier: str, name: str) -> Result[CustomerRecord]:
        """Look up a customer by identifier, falling back to name."""
        url = self.source_for(unit_code)
        if not url:
            return Result.failure(f"no workbook configured for unit {unit_code}", NOT_CONFIGURED)

        try:
            workbook = await self.fetch_workbook(url)
        except WorkbookLookupError as e:
            logger.error(
                f"Workbook lookup failed: {e.message}",
                extra={"context": {"unit": unit_code, "code": e.code}},
            )
            return Result.failure(e.message, e.code)

        sheet = find_sheet(workbook, identifier) if identifier else None
        if sheet is None:
            sheet = find_sheet(workbook, name)
        if sheet is None:
            logger.info(
                "Customer not found in workbook",
                extra={"context": {"unit": unit_code, "sheets": len(workbook)}},
            )
            return Result.failure("customer not found", NOT_FOUND)

        logger.info("Customer sheet matched", extra={"context": {"unit": unit_code, "sheet": sheet}})
        return Result.success(build_record(workbook[sheet], name, identifier))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
