"""
Data Quality Module
"""
from .validators import (
    OrderValidation,
    ProjectionValidator,
    ValidationResult,
    create_projection_validator,
    validate,
)

__all__ = [
    "OrderValidation",
    "ProjectionValidator",
    "ValidationResult",
    "create_projection_validator",
    "validate",
]
