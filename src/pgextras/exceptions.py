"""
Exception classes for geometry/hstore conversion and database access.
"""
import psycopg


class DatabaseError(Exception):
    """Base class for all pgextras errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """


class QueryError(DatabaseError):
    """Statement is not acceptable for the requested operation.
    """


class TypeConversionError(DatabaseError):
    """Error converting types between Python and database.
    """


class DecodeError(TypeConversionError):
    """A named geometry or hstore column is missing or cannot be parsed.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


class ColumnMismatchError(ValidationError):
    """A column named for writing is absent from the records or the target table.
    """


class InvalidColumnRoleError(ValidationError):
    """A column is used in a role its type does not permit.

    Geometry and hstore columns cannot identify rows in an update, and one
    column cannot be both the geometry and the hstore column.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    psycopg.DatabaseError,
    QueryError,
    )

OperationalError = (
    psycopg.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    )
