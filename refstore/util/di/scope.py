"""Custom Dishka scopes for refstore."""

from dishka import BaseScope, new_scope


class Scope(BaseScope):  # type: ignore[misc]  # BaseScope is designed to be subclassed
    """refstore dependency injection scopes.

    Hierarchy: APP -> UOW

    - APP: Application lifetime (engine, HTTP client, repositories)
    - UOW: Unit of Work (one ingestion run or one worker poll)
    """

    APP = new_scope("APP")
    UOW = new_scope("UOW")
