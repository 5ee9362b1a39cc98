from __future__ import annotations

from pathlib import Path

import pytest

from dealerhub.core.config import Settings, get_settings
from dealerhub.services.container import ServiceContainer
from dealerhub.tests.utils.config import make_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    # Settings are cached per process; never let one test's environment leak into the next.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path / "data")


@pytest.fixture
def container(settings: Settings) -> ServiceContainer:
    return ServiceContainer(settings)
