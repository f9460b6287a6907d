"""Validation of identifiers that end up inside SQL text.

Table and column names of user-defined tables are chosen at runtime, so they
cannot be bound as query parameters. Every such name must come out of one of
the functions below before it is placed in a statement:

- ``sanitize_identifier`` for table, field and lookup names typed by users
- ``extract_username`` for the account prefix derived from an email address
- ``physical_table_name`` to combine the two

Copyright (c) Bryn Gwalad 2025
"""

import re

from utils.errors import BadRequestError

IDENTIFIER_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# PostgreSQL truncates longer names silently.
MAX_IDENTIFIER_LENGTH = 63

# Leaves room for "_data_<table_name>" in the physical name.
MAX_USERNAME_LENGTH = 20

RESERVED_WORDS = frozenset(
    [
        "select", "insert", "update", "delete", "drop", "table", "database",
        "user", "password", "admin", "root", "system", "schema", "index",
    ]
)


class PhysicalIdentifier(str):
    """A name that is safe to interpolate into SQL text.

    Construction validates the pattern and length, so holding an instance is
    proof the value went through validation.
    """

    __slots__ = ()

    def __new__(cls, value):
        if not isinstance(value, str) or not value:
            raise BadRequestError("Identifier must be a non-empty string")
        if not IDENTIFIER_RE.match(value):
            raise BadRequestError(
                f"Invalid identifier: {value}. Must start with a lowercase letter and "
                "contain only lowercase letters, numbers, and underscores."
            )
        if len(value) > MAX_IDENTIFIER_LENGTH:
            raise BadRequestError(
                f"Identifier too long (max {MAX_IDENTIFIER_LENGTH} chars): {value}"
            )
        return super().__new__(cls, value)


def sanitize_identifier(name) -> PhysicalIdentifier:
    """Validate a user-supplied identifier and return it unchanged.

    No normalisation happens here: ``"Widgets"`` is rejected rather than
    lowercased, so callers that accept mixed case must lowercase first.
    """
    identifier = PhysicalIdentifier(name)
    if identifier in RESERVED_WORDS:
        raise BadRequestError(f"Identifier cannot be a reserved keyword: {name}")
    return identifier


def extract_username(email) -> str:
    """Derive the account prefix used in physical table names from an email.

    >>> extract_username("Jane.Doe+1@x.com")
    'jane_doe_1'
    """
    if not email or not isinstance(email, str):
        raise BadRequestError("Email must be a non-empty string")

    parts = email.split("@")
    if len(parts) != 2 or not parts[0]:
        raise BadRequestError("Invalid email format")

    username = re.sub(r"[^a-z0-9]", "_", parts[0].lower())
    if not re.match(r"[a-z]", username):
        username = "u_" + username
    return username[:MAX_USERNAME_LENGTH]


def physical_table_name(username: str, table_name: str) -> PhysicalIdentifier:
    """Name of the relation backing ``table_name`` for the account ``username``."""
    name = f"{username}_data_{table_name}"
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise BadRequestError(
            f"Table name '{table_name}' is too long for this account "
            f"(physical name would exceed {MAX_IDENTIFIER_LENGTH} chars)"
        )
    return PhysicalIdentifier(name)
