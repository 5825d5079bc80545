"""Core data models - canonical value types and audit records.

Shared by the statement parser, the reconciliation engine and the audit log.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    FrozenRecord,

    # Value types
    DecimalValue,
    MoneyValue,
    DateValue,
    StatementDateValue,
    OptionalStatementDateValue,
    OptionalText,
    RequiredText,

    # Helpers
    parse_statement_date,
    quantize_money,
    utc_now,
    as_utc,
    ZERO,
)

from core.models.refs import (
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    # Base
    "CanonicalBase",
    "FrozenRecord",

    # Value types
    "DecimalValue",
    "MoneyValue",
    "DateValue",
    "StatementDateValue",
    "OptionalStatementDateValue",
    "OptionalText",
    "RequiredText",

    # Helpers
    "parse_statement_date",
    "quantize_money",
    "utc_now",
    "as_utc",
    "ZERO",

    # Audit
    "AuditEvent",
    "AuditSeverity",
]
