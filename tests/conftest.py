import pytest

from domain.cost_resolver import CostResolver
from domain.currency_pool import PoolRegistry
from domain.gains_engine import GainsEngine
from tests.helpers.time_utils import DEFAULT_TIME_GEN


@pytest.fixture(autouse=True)
def _reset_default_time_gen() -> None:
    DEFAULT_TIME_GEN.reset()


@pytest.fixture(scope="function")
def registry() -> PoolRegistry:
    return PoolRegistry()


@pytest.fixture(scope="function")
def resolver(registry: PoolRegistry) -> CostResolver:
    return CostResolver(registry, base_currency="SEK")


@pytest.fixture(scope="function")
def gains_engine() -> GainsEngine:
    return GainsEngine(base_currency="SEK")
