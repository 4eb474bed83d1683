"""
Two-Stage Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Enum membership (transaction/account/category type, budget period)
- Amounts strictly positive
- This catches malformed form input

STAGE 2 - SEMANTIC VALIDATION:
- Referenced accounts and categories exist in the caller's company
- Referenced entities are still active
- Category type agrees with transaction type
- Transfers name two different accounts
- This catches requests that are well-formed but make no sense

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Can skip stage 2 if stage 1 fails
4. Stage 2 needs access to storage

IMPORTANT: Validation NEVER silently fixes issues.
It reports them and the service refuses the request on any error.
A reference into another company is reported exactly like a missing one.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from approval_ledger.errors import InternalError
from approval_ledger.models.finance import (
    AccountInput,
    AccountType,
    BudgetInput,
    BudgetPeriod,
    CategoryInput,
    CategoryType,
    TransactionInput,
    TransactionType,
    TransactionUpdate,
)
from approval_ledger.models.validation import ValidationIssue, ValidationResult
from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)

HEX_COLOR_LENGTH = 7


def _enum_values(enum_cls) -> str:
    return ", ".join(member.value for member in enum_cls)


def _error(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
        suggested_fix=fix,
    )


def _warning(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="warning",
        suggested_fix=fix,
    )


def _has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def _check_required_text(issues: list, field: str, value: Optional[str], label: str) -> None:
    if value is None or not value.strip():
        issues.append(_error(field, "missing", f"{label} is required"))


def _check_enum(issues: list, field: str, value: Optional[str], enum_cls, label: str) -> None:
    if value is None or value == "":
        issues.append(_error(field, "missing", f"{label} is required"))
        return
    try:
        enum_cls(value)
    except ValueError:
        issues.append(_error(
            field,
            "invalid_value",
            f"Unknown {label.lower()} '{value}'",
            fix=f"Use one of: {_enum_values(enum_cls)}",
        ))


def _check_amount(issues: list, field: str, amount: Optional[Decimal], required: bool = True) -> None:
    if amount is None:
        if required:
            issues.append(_error(field, "missing", "Amount is required"))
        return
    if amount <= 0:
        issues.append(_error(
            field,
            "invalid_value",
            "Amount must be greater than zero",
        ))


class InputValidator:
    """
    Validates caller input through a two-stage pipeline.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (reads referenced entities)
    """

    def __init__(self, store: EntityStore):
        self._store = store

    async def _lookup(self, collection: Collection, entity_id: UUID, company_id: UUID) -> Optional[BaseModel]:
        try:
            return await self._store.find_one(collection, {"id": entity_id, "company_id": company_id})
        except Exception as e:
            logger.error(
                "validation_lookup_failed",
                collection=collection.value,
                entity_id=str(entity_id),
                error=str(e),
            )
            raise InternalError("Failed to validate input") from e

    @staticmethod
    def _result(schema_issues: list, semantic_issues: Optional[list] = None) -> ValidationResult:
        semantic_issues = semantic_issues or []
        schema_valid = not _has_errors(schema_issues)
        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=schema_valid and not _has_errors(semantic_issues),
            issues=schema_issues + semantic_issues,
        )

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _transaction_schema(self, data: TransactionInput) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        _check_enum(issues, "type", data.type, TransactionType, "Transaction type")
        _check_amount(issues, "amount", data.amount)
        return issues

    async def _account_issue(
        self,
        field: str,
        account_id: UUID,
        company_id: UUID,
    ) -> Optional[ValidationIssue]:
        account = await self._lookup(Collection.ACCOUNTS, account_id, company_id)
        if account is None:
            return _error(field, "not_found", f"Account {account_id} not found")
        if not account.is_active:
            return _error(
                field,
                "inactive",
                f"Account '{account.name}' has been deleted",
                fix="Choose an active account",
            )
        return None

    async def _transaction_semantic(
        self,
        data: TransactionInput,
        company_id: UUID,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        txn_type = TransactionType(data.type)

        for field in ("from_account_id", "to_account_id"):
            account_id = getattr(data, field)
            if account_id is not None:
                issue = await self._account_issue(field, account_id, company_id)
                if issue is not None:
                    issues.append(issue)

        if txn_type == TransactionType.INCOME and data.to_account_id is None:
            issues.append(_warning(
                "to_account_id",
                "missing",
                "Income has no destination account; no balance will change on approval",
            ))
        if txn_type == TransactionType.EXPENSE and data.from_account_id is None:
            issues.append(_warning(
                "from_account_id",
                "missing",
                "Expense has no source account; no balance will change on approval",
            ))
        if txn_type == TransactionType.TRANSFER:
            if data.from_account_id is None or data.to_account_id is None:
                issues.append(_error(
                    "from_account_id" if data.from_account_id is None else "to_account_id",
                    "missing",
                    "A transfer needs both a source and a destination account",
                ))
            elif data.from_account_id == data.to_account_id:
                issues.append(_error(
                    "to_account_id",
                    "invalid_value",
                    "A transfer cannot move money into the account it comes from",
                ))

        if data.category_id is not None:
            category = await self._lookup(Collection.CATEGORIES, data.category_id, company_id)
            if category is None:
                issues.append(_error(
                    "category_id", "not_found", f"Category {data.category_id} not found"
                ))
            elif not category.is_active:
                issues.append(_error(
                    "category_id",
                    "inactive",
                    f"Category '{category.name}' has been deleted",
                ))
            elif txn_type == TransactionType.TRANSFER:
                issues.append(_warning(
                    "category_id",
                    "ignored",
                    "Transfers are not counted against budgets; the category is informational",
                ))
            elif category.type.value != txn_type.value:
                issues.append(_error(
                    "category_id",
                    "inconsistent",
                    f"Category '{category.name}' is an {category.type.value} category "
                    f"and cannot classify an {txn_type.value}",
                    fix=f"Pick an {txn_type.value} category",
                ))

        return issues

    async def validate_transaction(
        self,
        data: TransactionInput,
        company_id: UUID,
    ) -> ValidationResult:
        """
        Run full two-stage validation on a new transaction.

        Returns:
            ValidationResult with all issues found
        """
        schema_issues = self._transaction_schema(data)

        # Only run stage 2 if stage 1 passes
        semantic_issues: list[ValidationIssue] = []
        if not _has_errors(schema_issues):
            semantic_issues = await self._transaction_semantic(data, company_id)

        return self._result(schema_issues, semantic_issues)

    def validate_transaction_update(self, data: TransactionUpdate) -> ValidationResult:
        issues: list[ValidationIssue] = []
        _check_amount(issues, "amount", data.amount, required=False)
        if data.description is None and data.amount is None and data.transaction_date is None:
            issues.append(_error("fields", "missing", "Nothing to update"))
        return self._result(issues)

    # =========================================================================
    # CATALOG
    # =========================================================================

    def validate_account(self, data: AccountInput, partial: bool = False) -> ValidationResult:
        """
        Schema checks for account create (or update when `partial`).

        On update, None means "leave unchanged" and is not an issue.
        """
        issues: list[ValidationIssue] = []
        if not partial or data.name is not None:
            _check_required_text(issues, "name", data.name, "Account name")
        if not partial or data.type is not None:
            _check_enum(issues, "type", data.type, AccountType, "Account type")
        if not partial or data.currency is not None:
            if not data.currency:
                issues.append(_error("currency", "missing", "Currency is required"))
            elif len(data.currency) != 3 or not data.currency.isalpha():
                issues.append(_error(
                    "currency",
                    "invalid_value",
                    f"Currency '{data.currency}' is not a 3-letter code",
                    fix="Use an ISO 4217 code such as USD",
                ))
        return self._result(issues)

    def validate_category(self, data: CategoryInput, partial: bool = False) -> ValidationResult:
        issues: list[ValidationIssue] = []
        if not partial or data.name is not None:
            _check_required_text(issues, "name", data.name, "Category name")
        if not partial:
            _check_enum(issues, "type", data.type, CategoryType, "Category type")
        elif data.type is not None:
            issues.append(_error(
                "type",
                "immutable",
                "A category's type cannot change after creation",
                fix="Create a new category instead",
            ))
        if data.color:
            color = data.color
            valid = (
                len(color) == HEX_COLOR_LENGTH
                and color.startswith("#")
                and all(c in "0123456789abcdefABCDEF" for c in color[1:])
            )
            if not valid:
                issues.append(_error(
                    "color",
                    "invalid_value",
                    f"Color '{color}' is not a hex color",
                    fix="Use the form #RRGGBB",
                ))
        return self._result(issues)

    async def validate_budget(
        self,
        data: BudgetInput,
        company_id: UUID,
        partial: bool = False,
    ) -> ValidationResult:
        schema_issues: list[ValidationIssue] = []
        if not partial or data.name is not None:
            _check_required_text(schema_issues, "name", data.name, "Budget name")
        _check_amount(schema_issues, "amount", data.amount, required=not partial)
        if not partial:
            _check_enum(schema_issues, "period", data.period, BudgetPeriod, "Budget period")
            if data.category_id is None:
                schema_issues.append(_error("category_id", "missing", "Category is required"))
        elif data.category_id is not None or data.period is not None:
            schema_issues.append(_error(
                "category_id" if data.category_id is not None else "period",
                "immutable",
                "Only a budget's name and amount can change",
            ))

        semantic_issues: list[ValidationIssue] = []
        if not _has_errors(schema_issues) and not partial:
            category = await self._lookup(Collection.CATEGORIES, data.category_id, company_id)
            if category is None:
                semantic_issues.append(_error(
                    "category_id", "not_found", f"Category {data.category_id} not found"
                ))
            elif not category.is_active:
                semantic_issues.append(_error(
                    "category_id", "inactive", f"Category '{category.name}' has been deleted"
                ))
            elif category.type == CategoryType.INCOME:
                semantic_issues.append(_warning(
                    "category_id",
                    "suspicious_value",
                    f"'{category.name}' is an income category; only expenses consume budgets",
                ))

        return self._result(schema_issues, semantic_issues)
