"""
Persistence Exception Classes for PingMaster

Raised by the repository layer. The check pipeline logs these and
keeps going; they never stop a monitor's timer.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from exceptions.base import PingMasterException


class PersistenceFailure(PingMasterException):
    """
    Base Persistence Exception

    Parent class for all storage-related exceptions.
    """

    default_error_code = 2000

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize persistence exception.

        Args:
            message: Error message
            query: The SQL statement that caused the error (sanitized)
            table: The database table involved
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if query:
            self.details["query"] = self._sanitize_query(query)

        if table:
            self.details["table"] = table

    @staticmethod
    def _sanitize_query(query: str) -> str:
        """Strip literal values out of a SQL statement before logging it."""
        query = re.sub(r"'[^']*'", "'***'", query)
        query = re.sub(r"= \d+", "= ***", query)

        if len(query) > 500:
            query = query[:500] + "..."

        return query


class DatabaseConnectionError(PersistenceFailure):
    """
    Database Connection Error

    Raised when the engine cannot be created or a connection cannot
    be opened.
    """

    default_error_code = 2001

    def __init__(
        self,
        message: str = "Unable to connect to database",
        url: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if url:
            # Never log credentials embedded in the URL
            self.details["url"] = re.sub(r"//[^@/]*@", "//***@", url)


class DatabaseQueryError(PersistenceFailure):
    """
    Database Query Error

    Raised when a statement fails inside a repository session.
    """

    default_error_code = 2002

    def __init__(
        self,
        message: str = "Database query failed",
        operation: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize query error.

        Args:
            message: Error message
            operation: The repository operation that failed
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if operation:
            self.details["operation"] = operation
