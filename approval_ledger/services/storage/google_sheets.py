"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a storage backend because:
1. Finance staff can view the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each collection lives in its own worksheet. Row 1 holds the model's field
names; every following row is one entity. Dict/list fields (audit change
sets) are JSON-serialized; None is an empty cell.

TRADEOFFS:
- Not suitable for high-volume data
- No multi-step transactions (supports_transactions is False)
- Limited query capabilities (we filter in Python)

Single-entity atomicity is provided by an asyncio lock per worksheet: a
find_one_and_update re-reads the sheet and writes the row while holding
the lock, so two approvals in the same process cannot both see `pending`.
Nothing protects against a second process writing the same sheet.
"""

import asyncio
import json
from typing import Any, Mapping, Optional, get_origin

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from approval_ledger.config import GoogleSheetsSettings, get_settings
from approval_ledger.services.storage.interface import (
    COLLECTION_MODELS,
    Collection,
    DuplicateError,
    EntityStore,
    Filter,
    StorageConnectionError,
    StorageError,
    apply_update,
    matches,
    sort_and_page,
)


logger = structlog.get_logger(__name__)


def columns_for(collection: Collection) -> list[str]:
    """Header row for a collection: the model's field names in order."""
    return list(COLLECTION_MODELS[collection].model_fields)


def _json_columns(collection: Collection) -> set[str]:
    fields = COLLECTION_MODELS[collection].model_fields
    return {
        name for name, info in fields.items()
        if get_origin(info.annotation) in (dict, list)
    }


def entity_to_row(collection: Collection, entity: BaseModel) -> list[str]:
    """Convert an entity to a spreadsheet row."""
    data = entity.model_dump(mode="json")
    row = []
    for column in columns_for(collection):
        value = data.get(column)
        if value is None:
            row.append("")
        elif isinstance(value, (dict, list)):
            row.append(json.dumps(value))
        else:
            row.append(str(value))
    return row


def row_to_entity(collection: Collection, header: list[str], row: list[str]) -> BaseModel:
    """Convert a spreadsheet row back to an entity."""
    json_columns = _json_columns(collection)
    data: dict[str, Any] = {}
    for index, column in enumerate(header):
        # Handle missing columns gracefully
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        data[column] = json.loads(value) if column in json_columns else value
    return COLLECTION_MODELS[collection].model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def sheet_name(self, collection: Collection) -> str:
        return {
            Collection.ACCOUNTS: self._settings.accounts_sheet_name,
            Collection.CATEGORIES: self._settings.categories_sheet_name,
            Collection.BUDGETS: self._settings.budgets_sheet_name,
            Collection.TRANSACTIONS: self._settings.transactions_sheet_name,
            Collection.AUDIT_LOGS: self._settings.audit_sheet_name,
            Collection.USERS: self._settings.users_sheet_name,
        }[collection]

    def get_worksheet(self, collection: Collection) -> gspread.Worksheet:
        """Get or create the worksheet for a collection."""
        spreadsheet = self.get_spreadsheet()
        title = self.sheet_name(collection)
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            columns = columns_for(collection)
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=5000 if collection == Collection.AUDIT_LOGS else 1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsEntityStore(EntityStore):
    """
    Google Sheets implementation of the entity store.

    gspread is synchronous; calls are made inline, as the rest of the
    request is waiting on them anyway.
    """

    supports_transactions = False

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._locks: dict[Collection, asyncio.Lock] = {}

    def _lock_for(self, collection: Collection) -> asyncio.Lock:
        if collection not in self._locks:
            self._locks[collection] = asyncio.Lock()
        return self._locks[collection]

    def _load(self, collection: Collection) -> tuple[gspread.Worksheet, list[tuple[int, BaseModel]]]:
        """Read every entity in a worksheet, paired with its 1-based row number."""
        sheet = self._client.get_worksheet(collection)
        all_rows = sheet.get_all_values()
        if not all_rows:
            return sheet, []

        header = all_rows[0]
        entities = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not row or not row[0]:
                continue
            try:
                entities.append((idx, row_to_entity(collection, header, row)))
            except Exception as e:
                logger.warning(
                    "sheet_row_skipped",
                    collection=collection.value,
                    row=idx,
                    error=str(e),
                )
        return sheet, entities

    async def find_one(
        self,
        collection: Collection,
        filter: Filter,
    ) -> Optional[BaseModel]:
        try:
            _, entities = self._load(collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}: {e}")

        for _, entity in entities:
            if matches(entity, filter):
                return entity
        return None

    async def find(
        self,
        collection: Collection,
        filter: Filter,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        try:
            _, entities = self._load(collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {collection.value}: {e}")

        found = [entity for _, entity in entities if matches(entity, filter)]
        return sort_and_page(found, sort_by, descending, limit, offset)

    async def count(self, collection: Collection, filter: Filter) -> int:
        return len(await self.find(collection, filter))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def insert(self, collection: Collection, entity: BaseModel) -> None:
        async with self._lock_for(collection):
            try:
                sheet, entities = self._load(collection)
                if any(existing.id == entity.id for _, existing in entities):
                    raise DuplicateError(
                        f"{collection.value} entity already exists: {entity.id}"
                    )
                sheet.append_row(entity_to_row(collection, entity), value_input_option="RAW")
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to save {collection.value}: {e}")

    def _write_row(
        self,
        sheet: gspread.Worksheet,
        collection: Collection,
        row_number: int,
        entity: BaseModel,
    ) -> None:
        sheet.update(
            range_name=f"A{row_number}",
            values=[entity_to_row(collection, entity)],
        )

    async def find_one_and_update(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> Optional[BaseModel]:
        self._guard_mutable(collection)
        async with self._lock_for(collection):
            try:
                sheet, entities = self._load(collection)
                for row_number, entity in entities:
                    if matches(entity, filter):
                        updated = apply_update(entity, set_fields, inc_fields)
                        self._write_row(sheet, collection, row_number, updated)
                        return updated
                return None
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update {collection.value}: {e}")

    async def update_many(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> int:
        self._guard_mutable(collection)
        async with self._lock_for(collection):
            try:
                sheet, entities = self._load(collection)
                updated_count = 0
                for row_number, entity in entities:
                    if matches(entity, filter):
                        updated = apply_update(entity, set_fields, inc_fields)
                        self._write_row(sheet, collection, row_number, updated)
                        updated_count += 1
                return updated_count
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update {collection.value}: {e}")

    async def delete_one(self, collection: Collection, filter: Filter) -> bool:
        self._guard_mutable(collection)
        async with self._lock_for(collection):
            try:
                sheet, entities = self._load(collection)
                for row_number, entity in entities:
                    if matches(entity, filter):
                        sheet.delete_rows(row_number)
                        return True
                return False
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to delete {collection.value}: {e}")
