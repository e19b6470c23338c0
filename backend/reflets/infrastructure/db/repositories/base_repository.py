"""
Base Repository helpers for Reflets

Translates SQLAlchemy/driver failures into the application's exception
hierarchy so services never inspect driver errors. A uniqueness violation
(SQLSTATE 23505) becomes ``DuplicateError`` naming the violated field; any
other datastore failure becomes ``DatabaseError``.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from reflets.infrastructure.exceptions import DatabaseError, DuplicateError


logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _driver_error(exc: BaseException) -> Optional[BaseException]:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    return orig.__cause__ or orig


def get_sqlstate(exc: BaseException) -> Optional[str]:
    """SQLSTATE of a wrapped DBAPI error, whichever layer carries it."""
    for candidate in (getattr(exc, "orig", None), _driver_error(exc)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, IntegrityError) and get_sqlstate(exc) == UNIQUE_VIOLATION


def violated_constraint(exc: BaseException) -> Optional[str]:
    driver = _driver_error(exc)
    return getattr(driver, "constraint_name", None) if driver is not None else None


@contextmanager
def database_errors(
    operation: str,
    table: str,
    unique_fields: Optional[Dict[str, str]] = None,
    default_field: Optional[str] = None,
) -> Iterator[None]:
    """
    Wrap a repository operation.

    Args:
        operation: Verb for logs and error details ("insert", "update", ...)
        table: Table being touched
        unique_fields: Constraint-name fragment -> field name, used to name
            the field in a ``DuplicateError``
        default_field: Field reported when no fragment matches
    """
    try:
        yield
    except IntegrityError as e:
        if is_unique_violation(e):
            constraint = violated_constraint(e) or ""
            field = default_field
            for fragment, name in (unique_fields or {}).items():
                if fragment in constraint:
                    field = name
                    break
            raise DuplicateError(
                f"Duplicate value for {field or 'record'} in {table}",
                operation=operation,
                table=table,
                original_error=e,
                field=field,
            ) from e
        logger.error(f"Integrity error during {operation} on {table}: {e}")
        raise DatabaseError(
            f"Failed to {operation} {table}",
            operation=operation,
            table=table,
            original_error=e,
        ) from e
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database error during {operation} on {table}: {e}")
        raise DatabaseError(
            f"Failed to {operation} {table}",
            operation=operation,
            table=table,
            original_error=e,
        ) from e
