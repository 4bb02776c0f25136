"""
BuildLedger - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the ledger services.

Usage:
    from buildledger.exceptions import NotFoundError, ValidationError

    raise NotFoundError("Component", component_id)

    raise ValidationError("units_to_build must be positive", field="units_to_build")

Any exception raised inside an atomic unit rolls the whole unit back.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional


class BuildLedgerException(Exception):
    """
    Base exception for all BuildLedger errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "VALIDATION_ERROR")
        status_code: HTTP status code a web layer should return
        details: Additional context for debugging
    """

    error_code: str = "BUILDLEDGER_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# 400 Bad Request Errors
# ===================


class ValidationError(BuildLedgerException):
    """Raised when input validation fails."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


class InvalidStateError(BuildLedgerException):
    """Raised when an operation is invalid for the current state."""

    error_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        super().__init__(message, details=details)


class DuplicateError(BuildLedgerException):
    """Raised when attempting to create a duplicate resource."""

    error_code = "DUPLICATE_ERROR"
    status_code = 400

    def __init__(
        self,
        resource: str = "Resource",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        message = f"{resource} already exists"
        if field and value:
            message = f"{resource} with {field}='{value}' already exists"
        super().__init__(message, details=details)


# ===================
# 404 Not Found Errors
# ===================


class NotFoundError(BuildLedgerException):
    """
    Raised when a requested resource does not exist for the caller's tenant.

    Missing rows and rows owned by another company produce the same message,
    so callers cannot discover other tenants' ids.
    """

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["id"] = str(resource_id)
            message = f"{resource} {resource_id} not found or access denied"
        else:
            message = f"{resource} not found or access denied"
        super().__init__(message, details=details)


# ===================
# 409 Conflict Errors
# ===================


class ConcurrencyError(BuildLedgerException):
    """
    Raised when a conditional balance update matched no row.

    Another writer consumed the stock between our read and our write; the
    atomic unit is rolled back and the caller may retry.
    """

    error_code = "CONCURRENCY_ERROR"
    status_code = 409

    def __init__(
        self,
        message: str = "Balance changed concurrently; retry the operation",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class ConsistencyError(BuildLedgerException):
    """Raised when a request conflicts with stored state; carries every problem found."""

    error_code = "CONSISTENCY_ERROR"
    status_code = 409

    def __init__(
        self,
        message: str = "Request is inconsistent with stored data",
        *,
        errors: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        self.errors = errors or []
        if self.errors:
            details["errors"] = self.errors
        super().__init__(message, details=details)


class LotOverrideValidationError(ConsistencyError):
    """Raised when manual lot overrides reference bad lots or exceed lot balances."""

    error_code = "LOT_OVERRIDE_INVALID"


# ===================
# 422 Business Rule Errors
# ===================


class BusinessRuleError(BuildLedgerException):
    """Raised when a business rule is violated."""

    error_code = "BUSINESS_RULE_VIOLATION"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class InsufficientInventoryError(BusinessRuleError):
    """Raised when on-hand stock cannot cover a build or movement."""

    error_code = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        message: str = "Insufficient inventory",
        *,
        shortages: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        self.shortages = shortages or []
        if self.shortages:
            details["shortages"] = self.shortages
        super().__init__(message, rule="inventory_availability", details=details)


class InsufficientLotQuantityError(BusinessRuleError):
    """Raised when the lots of a component cannot cover the required quantity."""

    error_code = "INSUFFICIENT_LOT_QUANTITY"

    def __init__(
        self,
        component_id: int,
        required: Decimal,
        available: Decimal,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.component_id = component_id
        self.required = required
        self.available = available
        self.shortfall = required - available
        details = details or {}
        details.update({
            "component_id": component_id,
            "required": str(required),
            "available": str(available),
            "shortfall": str(self.shortfall),
        })
        message = (
            f"Insufficient lot quantity for component {component_id}. "
            f"Required: {required}, Available across lots: {available}"
        )
        super().__init__(message, rule="lot_availability", details=details)


# ===================
# 500 Server Errors
# ===================


class ConfigurationError(BuildLedgerException):
    """Raised when tenant setup is missing something an operation needs (e.g. a default location)."""

    error_code = "CONFIGURATION_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str = "Configuration error",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
