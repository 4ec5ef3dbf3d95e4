"""Tests for the static collaborators and the shared context."""

from forecast.context import StaticConnectivity, StaticRegionCatalog
from forecast_fakes import REGION_A, REGION_B


class TestStaticConnectivity:
    def test_wifi_requires_online(self):
        assert StaticConnectivity(online=False, wifi=True).is_on_wifi() is False
        assert StaticConnectivity(online=True, wifi=True).is_on_wifi() is True
        assert StaticConnectivity(online=True, wifi=False).is_on_wifi() is False


class TestStaticRegionCatalog:
    def test_resolve_and_add(self):
        catalog = StaticRegionCatalog([REGION_A])
        assert catalog.resolve('region_a') is REGION_A
        assert catalog.resolve('region_b') is None
        catalog.add(REGION_B)
        assert catalog.region_ids() == ['region_a', 'region_b']
        assert catalog.bounds(REGION_B) == REGION_B.bbox


class TestForecastContext:
    def test_tile_ids(self, manager):
        ctx = manager.ctx
        assert len(ctx.tile_ids('region_a')) == 10
        assert ctx.tile_ids('atlantis') is None

    def test_background_failure_propagates(self, manager):
        """run_async keeps the exception in the future."""

        def _boom():
            msg = 'boom'
            raise ValueError(msg)

        future = manager.ctx.run_async(_boom, 'boom')
        assert isinstance(future.exception(timeout=5), ValueError)

    def test_feature_active(self, make_manager):
        assert make_manager().ctx.feature_active() is True
        assert make_manager(enabled=False).ctx.feature_active() is False
        assert make_manager(is_feature_active=lambda: False).ctx.feature_active() is False
