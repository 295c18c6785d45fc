from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class SQLAlchemyRepository:
    """Base for repositories whose every method is its own short transaction.

    Ingestion state is shared by many concurrent workers, so nothing holds a
    session across calls; each mutation commits before returning.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
