"""Tests for the per-region download cycle."""

from __future__ import annotations

import random
import threading
import time

from forecast_fakes import (
    DAY_START,
    NOW,
    REGION_A,
    ZOOM,
    RecordingSink,
    drain_pool,
    tile_ids,
)
from shared.constants import (
    FORECAST_DATES_COUNT,
    HOUR_MS,
    LAST_UPDATE_NEVER,
    DownloadState,
)

DESTINATION = 10 * FORECAST_DATES_COUNT


class TestPreconditions:
    """start_download refuses without side effects."""

    def test_feature_disabled(self, make_manager, engine):
        """Disabled feature yields False and no requests."""
        manager = make_manager(enabled=False)
        assert manager.start_download('region_a') is False
        assert engine.requests == []
        assert manager.lifecycle.is_undefined('region_a')
        assert manager.info('region_a') is None

    def test_feature_switch_callable(self, make_manager, engine):
        """The injected feature switch is consulted."""
        manager = make_manager(is_feature_active=lambda: False)
        assert manager.start_download('region_a') is False
        assert engine.requests == []

    def test_offline(self, manager, engine, connectivity):
        """No network yields False."""
        connectivity.online = False
        assert manager.start_download('region_a') is False
        assert engine.requests == []
        assert manager.lifecycle.is_undefined('region_a')

    def test_wifi_only_without_wifi(self, manager, engine, connectivity):
        """Wi-Fi-only region is refused on a metered connection."""
        connectivity.wifi = False
        manager.lifecycle.set_wifi_only('region_a', True)
        assert manager.start_download('region_a') is False
        assert engine.requests == []

    def test_wifi_only_on_wifi(self, manager, engine):
        """Wi-Fi-only region downloads on Wi-Fi."""
        manager.lifecycle.set_wifi_only('region_a', True)
        manager.start_download('region_a')
        assert len(engine.requests) == FORECAST_DATES_COUNT

    def test_unknown_region(self, manager, engine):
        """A region the catalog does not know is refused."""
        assert manager.start_download('atlantis') is False
        assert engine.requests == []
        assert manager.lifecycle.is_undefined('atlantis')

    def test_finished_region_stays_finished_when_refused(self, manager, engine, connectivity):
        """A refusal does not touch an earlier result."""
        manager.lifecycle.set_download_state('region_a', DownloadState.FINISHED)
        connectivity.online = False
        assert manager.start_download('region_a') is False
        assert manager.lifecycle.is_finished('region_a')


class TestStartDownload:
    """Issuing the requests of a cycle."""

    def test_issues_one_request_per_slice(self, manager, engine):
        """73 requests, forced, at the configured zoom, hourly then 3-hourly."""
        assert manager.start_download('region_a') is False
        assert len(engine.requests) == FORECAST_DATES_COUNT
        assert all(r.force_refresh for r in engine.requests)
        assert all(r.zoom == ZOOM for r in engine.requests)
        assert all(r.bbox == REGION_A.bbox for r in engine.requests)
        times = [r.date_time for r in engine.requests]
        assert times[0] == DAY_START
        assert times[24] - times[23] == HOUR_MS
        assert times[25] - times[24] == 3 * HOUR_MS

    def test_sets_in_progress_and_resets_progress(self, manager):
        """State is IN_PROGRESS and progress 0 right after the call."""
        manager.start_download('region_a')
        assert manager.lifecycle.is_in_progress('region_a')
        assert manager.info('region_a').progress == 0

    def test_progress_sink_started(self, manager):
        """The sink gets the region name and the destination."""
        sink = RecordingSink()
        manager.start_download('region_a', sink)
        assert sink.started == [('Downloading Region A weather forecast', DESTINATION)]

    def test_progress_destination(self, manager):
        """Destination is tile count times slice count; -1 for unknown regions."""
        assert manager.get_progress_destination('region_a') == DESTINATION
        assert manager.get_progress_destination('atlantis') == -1

    def test_engine_rejection_counts_as_failed_slices(self, manager, engine):
        """Requests the engine refuses still count towards the destination."""
        engine.fail_issue = True
        manager.start_download('region_a')
        assert manager.lifecycle.is_finished('region_a')
        assert manager.info('region_a').progress == DESTINATION


class TestCompletion:
    """Aggregation of unordered tile callbacks."""

    def test_all_successful_completions_finish(self, manager, engine, layer_refreshes):
        """10 tiles x 73 slices = 730 completions reach FINISHED."""
        manager.start_download('region_a')
        engine.complete_all()
        assert manager.lifecycle.is_finished('region_a')
        assert manager.info('region_a').progress == DESTINATION
        assert manager.lifecycle.get_last_update('region_a') == NOW
        assert layer_refreshes == [True]

    def test_failed_tiles_still_finish(self, manager, engine):
        """Failures count towards the destination."""
        manager.start_download('region_a')
        engine.complete_all(failures=3)
        assert manager.lifecycle.is_finished('region_a')
        assert manager.info('region_a').progress == DESTINATION
        assert manager.lifecycle.get_last_update('region_a') != LAST_UPDATE_NEVER

    def test_failed_request_credits_missing_tiles(self, manager, engine):
        """A slice whose future raises counts all its unreported tiles."""
        manager.start_download('region_a')
        first, *rest = engine.requests
        first.on_tile_done(True, 1, 10)
        first.on_tile_done(False, 1, 10)
        first.future.set_exception(RuntimeError('transfer aborted'))
        assert manager.info('region_a').progress == 10
        engine.complete_all(rest)
        assert manager.lifecycle.is_finished('region_a')

    def test_out_of_order_completion(self, manager, engine):
        """Shuffled slices and tiles give a strictly decreasing remaining count."""
        sink = RecordingSink()
        manager.start_download('region_a', sink)
        rng = random.Random(42)
        requests = list(engine.requests)
        rng.shuffle(requests)
        for request in requests:
            order = list(range(request.tile_count))
            rng.shuffle(order)
            engine.complete(request, order=order, failures=2)
        assert sink.remaining_calls == list(range(DESTINATION - 1, -1, -1))
        assert manager.lifecycle.is_finished('region_a')

    def test_single_finished_transition(self, manager, engine, clock, layer_refreshes):
        """Callbacks after the destination change nothing."""
        manager.start_download('region_a')
        engine.complete_all()
        clock.now = NOW + HOUR_MS
        late = engine.requests[0]
        late.on_tile_done(True, 10, 10)
        late.on_tile_done(False, 10, 10)
        assert manager.info('region_a').progress == DESTINATION
        assert manager.lifecycle.get_last_update('region_a') == NOW
        assert layer_refreshes == [True]

    def test_concurrent_completion(self, manager, engine, layer_refreshes):
        """Callbacks from many threads lose no update and finish once."""
        manager.start_download('region_a')
        requests = list(engine.requests)
        chunks = [requests[i::8] for i in range(8)]
        threads = [
            threading.Thread(target=engine.complete_all, args=(chunk,)) for chunk in chunks
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert manager.info('region_a').progress == DESTINATION
        assert manager.lifecycle.is_finished('region_a')
        assert layer_refreshes == [True]

    def test_finish_recomputes_sizes(self, manager, engine, store, executor):
        """Completion triggers a size recomputation for the region."""
        for tile_id in tile_ids(REGION_A):
            store.local[tile_id] = 1000
        manager.start_download('region_a')
        engine.complete_all()
        drain_pool(executor)
        info = manager.info('region_a')
        assert info.sizes_calculated is True
        assert info.local_size == 10 * 1000

    def test_wait(self, manager, engine):
        """wait reports whether every issued request has settled."""
        manager.start_download('region_a')
        assert manager.wait('region_a', timeout=0) is False
        engine.complete_all()
        assert manager.wait('region_a', timeout=0) is True
        assert manager.wait('region_b', timeout=0) is True


class TestRestartAndCancel:
    """Superseded and cancelled cycles."""

    def test_restart_ignores_previous_cycle(self, manager, engine):
        """Callbacks of a superseded cycle do not count."""
        manager.start_download('region_a')
        old = list(engine.requests)
        manager.start_download('region_a')
        new = engine.requests[len(old):]
        assert all(r.cancel_token.cancelled for r in old)
        engine.complete_all(old)
        assert manager.info('region_a').progress == 0
        engine.complete_all(new)
        assert manager.lifecycle.is_finished('region_a')
        assert manager.info('region_a').progress == DESTINATION

    def test_stale_callbacks_blocked_during_restart(self, manager, engine):
        """Old-cycle callbacks queued on the region lock are ignored after a restart."""
        manager.start_download('region_a')
        old = engine.requests[0]
        with manager.ctx.info.region_lock('region_a'):
            threads = [
                threading.Thread(target=old.on_tile_done, args=(True, 1, 10))
                for _ in range(20)
            ]
            for t in threads:
                t.start()
            # let the callbacks get past the unlocked checks
            time.sleep(0.1)
            manager.start_download('region_a')
        for t in threads:
            t.join(timeout=5)
        assert manager.info('region_a').progress == 0
        assert manager.lifecycle.is_in_progress('region_a')

    def test_stop_while_issuing(self, manager, engine):
        """Leaving IN_PROGRESS during the loop suppresses the next requests."""

        def _stop_after_five(request):
            if len(engine.requests) == 5:
                manager.prepare_to_stop('region_a')

        engine.on_request = _stop_after_five
        manager.start_download('region_a')
        assert len(engine.requests) == 5
        assert manager.lifecycle.is_undefined('region_a')

    def test_token_follows_state(self, manager, engine):
        """The request token is cancelled once the state leaves IN_PROGRESS."""
        manager.start_download('region_a')
        token = engine.requests[0].cancel_token
        assert token.cancelled is False
        manager.lifecycle.set_download_state('region_a', DownloadState.UNDEFINED)
        assert token.cancelled is True

    def test_cancel_all(self, manager, engine):
        """cancel_all cancels tokens without touching persisted state."""
        manager.start_download('region_a')
        manager.orchestrator.cancel_all()
        assert engine.requests[0].cancel_token.cancelled is True
        assert manager.lifecycle.is_in_progress('region_a')


class TestPrepareToStop:
    """Stopping a running cycle."""

    def test_never_completed_goes_undefined(self, manager, engine):
        """No earlier cycle: UNDEFINED and the ephemeral entry is dropped."""
        manager.start_download('region_a')
        engine.complete_all(engine.requests[:10])
        state = manager.prepare_to_stop('region_a')
        assert state == DownloadState.UNDEFINED
        assert manager.lifecycle.is_undefined('region_a')
        assert manager.info('region_a') is None

    def test_late_callbacks_after_stop_ignored(self, manager, engine):
        """In-flight callbacks after a stop do not revive progress."""
        manager.start_download('region_a')
        manager.prepare_to_stop('region_a')
        engine.complete_all()
        assert manager.lifecycle.is_undefined('region_a')
        assert manager.info('region_a') is None

    def test_previously_completed_goes_finished(self, manager, engine):
        """An earlier cycle: FINISHED with progress at the destination."""
        manager.start_download('region_a')
        engine.complete_all()
        first_update = manager.lifecycle.get_last_update('region_a')
        manager.start_download('region_a')
        engine.complete_all(engine.requests[FORECAST_DATES_COUNT:FORECAST_DATES_COUNT + 3])
        assert manager.info('region_a').progress == 30
        state = manager.prepare_to_stop('region_a')
        assert state == DownloadState.FINISHED
        assert manager.info('region_a').progress == DESTINATION
        assert manager.lifecycle.get_last_update('region_a') == first_update

    def test_not_in_progress_is_untouched(self, manager):
        """Stopping an idle region only reports its state."""
        manager.lifecycle.set_download_state('region_a', DownloadState.FINISHED)
        assert manager.prepare_to_stop('region_a') == DownloadState.FINISHED
        assert manager.prepare_to_stop('region_b') == DownloadState.UNDEFINED

    def test_stop_invalidates_local_memo(self, manager):
        """The local whole-cache memo is reset on stop."""
        manager.ctx.memo.set(123, local=True)
        manager.ctx.memo.set(456, local=False)
        manager.prepare_to_stop('region_a')
        assert manager.ctx.memo.get(local=True) == 0
        assert manager.ctx.memo.get(local=False) == 456
