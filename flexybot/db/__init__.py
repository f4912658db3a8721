"""
Database engine construction for the pgvector store.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


def create_db_engine(database_url: str, statement_timeout: float = 10.0, connect_timeout: int = 10) -> Engine:
    """
    Create a SQLAlchemy engine with server-side statement and connect timeouts.

    Args:
        database_url: SQLAlchemy URL, e.g. postgresql+psycopg://user:pw@host/db
        statement_timeout: Seconds before Postgres cancels a statement
        connect_timeout: Seconds to wait for a connection
    """
    connect_args = {}
    if database_url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": connect_timeout,
            "options": f"-c statement_timeout={int(statement_timeout * 1000)}",
        }
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
