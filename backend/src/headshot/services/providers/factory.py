"""Provider selection by configuration."""

from headshot.core.config import Settings
from headshot.services.providers.base import GenerationProvider
from headshot.services.providers.replicate_provider import ReplicateProvider
from headshot.services.providers.v3 import V3Provider
from headshot.uow import UnitOfWorkFactory

PROVIDERS: dict[str, type[GenerationProvider]] = {
    V3Provider.id: V3Provider,
    ReplicateProvider.id: ReplicateProvider,
}


def build_provider(settings: Settings, uow_factory: UnitOfWorkFactory) -> GenerationProvider:
    """Instantiate the backend named by GENERATION_PROVIDER.

    Raises:
        ValueError: If the name is not one of the known backends
    """
    provider_cls = PROVIDERS.get(settings.generation_provider)
    if provider_cls is None:
        raise ValueError(f"Unknown generation provider: {settings.generation_provider}")
    return provider_cls(settings, uow_factory)
