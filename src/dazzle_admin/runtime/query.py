"""
List query parsing and SQL identifier helpers.

Turns the list-view query string (search, sortColumn, sortDirection, page,
itemsPerPage) into a ``ListQuery`` and provides the identifier quoting the
SQLite store relies on.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from dazzle_admin.runtime.config import ITEMS_PER_PAGE

# Valid SQL identifier pattern (alphanumeric and underscore, not starting with digit)
_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Args:
        name: The identifier to validate
        context: Description of what's being validated (for error messages)

    Returns:
        The validated name

    Raises:
        ValueError: If the name contains invalid characters
    """
    if not name:
        raise ValueError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str) -> str:
    """Validate and double-quote an identifier for use in SQL."""
    return f'"{validate_sql_identifier(name)}"'


@dataclass(frozen=True)
class ListQuery:
    """Search, sort and pagination options of a list view."""

    search: str | None = None
    sort_column: str | None = None
    sort_direction: Literal["asc", "desc"] = "asc"
    page: int = 1
    items_per_page: int = ITEMS_PER_PAGE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.items_per_page

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, str],
        default_items_per_page: int = ITEMS_PER_PAGE,
        max_items_per_page: int = 100,
    ) -> ListQuery:
        """
        Build a query from URL query parameters.

        Malformed numbers fall back to defaults; page is at least 1 and
        itemsPerPage is clamped to ``[1, max_items_per_page]``.
        """
        search = (params.get("search") or "").strip() or None
        sort_column = params.get("sortColumn") or None
        direction = (params.get("sortDirection") or "asc").lower()

        return cls(
            search=search,
            sort_column=sort_column,
            sort_direction="desc" if direction == "desc" else "asc",
            page=max(_parse_int(params.get("page"), 1), 1),
            items_per_page=min(
                max(_parse_int(params.get("itemsPerPage"), default_items_per_page), 1),
                max_items_per_page,
            ),
        )


def _parse_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
