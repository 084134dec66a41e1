"""Low-level connection utilities with no internal dependencies.

These utilities work with any connection type (ConnectionWrapper, SQLAlchemy
connections, raw psycopg connections) and import nothing else from the
package.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


def get_raw_connection(connection: Any) -> Any:
    """Extract the raw DBAPI connection from a wrapper."""
    raw_conn = connection
    if hasattr(connection, 'driver_connection'):
        raw_conn = connection.driver_connection
    return raw_conn


def ensure_commit(connection: Any) -> None:
    """Force a commit on a connection if it is not in auto-commit mode.

    Works safely even if the connection is already in auto-commit mode.
    """
    if hasattr(connection, 'commit'):
        try:
            connection.commit()
            return
        except Exception as e:
            logger.debug(f'Could not commit transaction: {e}')

    if hasattr(connection, 'driver_connection') and hasattr(connection.driver_connection, 'commit'):
        try:
            connection.driver_connection.commit()
            return
        except Exception as e:
            logger.debug(f'Could not commit driver_connection transaction: {e}')
