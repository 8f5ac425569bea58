"""
Data Validation Module

Two layers of checks:
- Record validation: identity and completeness of a canonical Order before
  it may enter the canonical store
- Projection validation: rule-based checks over a flattened frame, in the
  style of Great Expectations suites
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from orderflat.errors import EmptyLineItems, MissingIdentity, RecordRejected, RejectionReason
from orderflat.models.records import Order

logger = structlog.get_logger(__name__)


# =============================================================================
# RECORD VALIDATION
# =============================================================================

@dataclass(frozen=True)
class OrderValidation:
    """Outcome of validating one Order: either the order or a rejection"""
    order: Order
    error: Optional[RecordRejected] = None

    @property
    def passed(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.error.reason if self.error is not None else None


def validate(order: Order) -> OrderValidation:
    """
    Check the identity/completeness invariants of a canonical Order.

    Only three conditions reject: empty order_id, empty customer_id
    (MissingIdentity) and no line items (EmptyLineItems). Defaulted
    fields are accepted.

    Args:
        order: Normalized order

    Returns:
        OrderValidation carrying the order and, on rejection, the error
    """
    if not order.order_id:
        return OrderValidation(order, MissingIdentity("order_id is empty"))
    if not order.customer.customer_id:
        return OrderValidation(
            order,
            MissingIdentity("customer.customer_id is empty", order_id=order.order_id),
        )
    if not order.order_items:
        return OrderValidation(
            order,
            EmptyLineItems("order_items is empty", order_id=order.order_id),
        )
    return OrderValidation(order)


# =============================================================================
# PROJECTION VALIDATION
# =============================================================================

class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Critical - blocks pipeline
    WARNING = "warning"  # Non-critical - logged but continues


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def failed(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


class ProjectionValidator:
    """
    Rule-based validator for flattened frames.

    Example:
        validator = ProjectionValidator()
        validator.add_not_null_check("order_id")
        validator.add_unique_check(["order_id", "item_position"])
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Fail on any warning
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    @staticmethod
    def _missing(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Column '{column}' not found",
        )

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "ProjectionValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return self._missing(name, column, severity)

            null_count = df[column].null_count()
            passed = null_count == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: List[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "ProjectionValidator":
        """Add check for uniqueness of the combined key columns"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = "unique_" + "_".join(columns)
            for column in columns:
                if column not in df.columns:
                    return self._missing(name, column, severity)

            unique_count = df.select(columns).unique().height
            duplicate_count = df.height - unique_count
            passed = duplicate_count == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Key {columns} has {duplicate_count} duplicate rows" if not passed else f"Key {columns} is unique",
                details={"unique_count": unique_count, "duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "ProjectionValidator":
        """Add check for values within specified range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return self._missing(name, column, severity)

            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)
            if not conditions:
                return ValidationCheck(name=name, passed=True, severity=severity, message="No range specified")

            out_of_range = df.filter(pl.any_horizontal(conditions)).height
            passed = out_of_range == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_row_count_check(
        self,
        expected_rows: int,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "ProjectionValidator":
        """Add check that the frame has exactly the expected number of rows"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            passed = df.height == expected_rows
            return ValidationCheck(
                name="row_count",
                passed=passed,
                severity=severity,
                message=f"Expected {expected_rows} rows, found {df.height}" if not passed else "Row count matches",
                details={"expected": expected_rows, "actual": df.height},
                failed_rows=abs(df.height - expected_rows),
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.now(timezone.utc)
        results = []

        logger.info("Running projection checks", checks=len(self._checks), rows=df.height)

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)
            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )


def create_projection_validator(expected_rows: Optional[int] = None) -> ProjectionValidator:
    """Pre-configured validator for the flattened order-items projection"""
    validator = (
        ProjectionValidator()
        .add_not_null_check("order_id")
        .add_not_null_check("customer_id")
        .add_unique_check(["order_id", "item_position"])
        .add_range_check("price", min_value=0)
        .add_range_check("item_campaign_discount", min_value=0)
        .add_range_check("order_campaign_discount", min_value=0)
        .add_not_null_check("item_campaign_coupon")
        .add_not_null_check("order_campaign_coupon")
        .add_not_null_check("order_timestamp", severity=ValidationSeverity.WARNING)
    )
    if expected_rows is not None:
        validator.add_row_count_check(expected_rows)
    return validator
