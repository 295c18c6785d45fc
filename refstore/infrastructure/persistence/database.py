"""Database engine and session factory creation."""

import os
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from refstore.config import DatabaseConfig


def _expand_sqlite_path(url: str) -> str:
    """Expand ~ in SQLite URLs and ensure parent directory exists."""
    if not url.startswith("sqlite") or ":memory:" in url or url.endswith("///"):
        return url

    # Extract path from URL (sqlite+aiosqlite:///path or sqlite:///path)
    prefix_end = url.index("///") + 3
    prefix = url[:prefix_end]
    path = url[prefix_end:]

    # Expand ~ and make absolute
    expanded = os.path.expanduser(path)
    abs_path = os.path.abspath(expanded)

    # Ensure parent directory exists
    parent = Path(abs_path).parent
    parent.mkdir(parents=True, exist_ok=True)

    return f"{prefix}{abs_path}"


def create_db_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create async database engine.

    Handles SQLite and PostgreSQL with appropriate settings.
    """
    url = _expand_sqlite_path(config.url)
    is_sqlite = url.startswith("sqlite")

    if is_sqlite and ":memory:" in url:
        engine_kwargs: dict[str, Any] = {
            "echo": config.echo,
            # The in-memory database lives in one connection; share it across threads
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    elif is_sqlite:
        # Separate connections so concurrent workers never share a transaction;
        # SQLite serializes the writers, waiting up to busy_timeout_secs for the lock
        engine_kwargs = {
            "echo": config.echo,
            "connect_args": {"timeout": config.busy_timeout_secs},
        }
    else:
        engine_kwargs = {
            "echo": config.echo,
            "pool_pre_ping": True,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
        }

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory for dependency injection."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
