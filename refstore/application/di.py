from dishka import AsyncContainer, Provider, from_context, make_async_container

from refstore.config import Config
from refstore.infrastructure.ingest.di import IngestProvider
from refstore.infrastructure.persistence import PersistenceProvider
from refstore.util.di.scope import Scope


class ConfigProvider(Provider):
    config = from_context(provides=Config, scope=Scope.APP)


def create_container(config: Config | None = None) -> AsyncContainer:
    # Pydantic Settings populates from env vars at runtime
    config = config or Config()  # type: ignore[call-arg]

    return make_async_container(
        ConfigProvider(),
        PersistenceProvider(),
        IngestProvider(),
        context={Config: config},
        scopes=Scope,  # type: ignore[arg-type]  # Custom scope class
    )
