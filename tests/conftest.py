"""Configuration for pytest testing framework."""

from itertools import count

import pytest

from repokit.adapters.cache import CacheSettings, MemoryCache
from repokit.config import registered_settings
from repokit.depends import depends
from repokit.locales import StaticLocaleProvider
from repokit.services.repository import (
    CachedRepository,
    Repository,
    RepositoryCacheSettings,
    RepositorySettings,
)
from tests.mocks import CountingStore, User, load_posts

_namespaces = count()


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line(
        "markers",
        "integration: tests that exercise a real database engine",
    )


@pytest.fixture(autouse=True)
def restore_default_settings():
    """Re-register default settings so one test's overrides never leak."""
    yield
    for settings_cls in registered_settings().values():
        depends.set(settings_cls, settings_cls())


@pytest.fixture
def store() -> CountingStore:
    return CountingStore(User, relations={"posts": load_posts})


@pytest.fixture
def repository(store: CountingStore) -> Repository[User]:
    return Repository(store, settings=RepositorySettings())


@pytest.fixture
def seeded_repository(repository: Repository[User]):
    async def seed(*emails: str) -> list[User]:
        return [
            await repository.create({"email": email, "name": email.split("@")[0]})
            for email in emails
        ]

    return seed


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache(CacheSettings(namespace=f"test{next(_namespaces)}:"))


@pytest.fixture
def locales() -> StaticLocaleProvider:
    return StaticLocaleProvider(["en", "fr", "de"])


@pytest.fixture
def cached_repository(
    repository: Repository[User],
    memory_cache: MemoryCache,
    locales: StaticLocaleProvider,
) -> CachedRepository[User]:
    return CachedRepository(
        repository,
        cache=memory_cache,
        locales=locales,
        settings=RepositoryCacheSettings(),
    )
