"""Tests for watch resolution, broadcasting and the DepartureFeed."""

import dataclasses
import os
import tempfile
import threading
import time
import unittest
import zipfile
from datetime import datetime, timedelta

from gtfs_fixtures import NOW, gtfs_tables, make_store
from trainfeed.broadcast import BroadcastEngine
from trainfeed.config import FeedConfig
from trainfeed.departure_feed import DepartureFeed
from trainfeed.models import Direction, RealtimeUpdate, Route, Watch, WatchFilter
from trainfeed.query_resolver import resolve_watch, route_matches
from trainfeed.schedule_store import ScheduleBusyError, ScheduleNotLoadedError, ScheduleStore
from trainfeed.scheduler import IntervalTimer
from trainfeed.watch_registry import WatchRegistry

TOMORROW_0815 = datetime.combine((NOW + timedelta(days=1)).date(), datetime.min.time()).replace(hour=8, minute=15)


class TestQueryResolver(unittest.TestCase):
    """Test resolving filters into routes and stops."""

    def setUp(self):
        self.store = make_store()

    def test_route_matches(self):
        route = Route(route_id="R2", name="Harlem Line", short_name="HAR")
        self.assertTrue(route_matches(route, None))
        self.assertTrue(route_matches(route, "Harlem"))
        self.assertTrue(route_matches(route, "R2"))
        self.assertTrue(route_matches(route, "HAR"))
        self.assertFalse(route_matches(route, "Hudson"))

    def test_route_and_stop(self):
        watch = resolve_watch(self.store, WatchFilter(route_name="Hudson", stop_name="Tarrytown"))
        self.assertEqual(list(watch.routes), ["R1"])
        self.assertEqual(list(watch.stops), ["S1"])

    def test_stop_only(self):
        watch = resolve_watch(self.store, WatchFilter(stop_name="White"))
        self.assertEqual(list(watch.routes), ["R2"])
        self.assertEqual(list(watch.stops), ["S2"])

    def test_no_stop_name_matches_every_stop_of_the_route(self):
        watch = resolve_watch(self.store, WatchFilter(route_name="Hudson"))
        self.assertCountEqual(watch.stops, ["S1", "S4"])

    def test_watch_is_immutable(self):
        watch = resolve_watch(self.store, WatchFilter(route_name="Hudson", stop_name="Tarrytown"))
        with self.assertRaises(dataclasses.FrozenInstanceError):
            watch.stops = {}

    def test_no_match_is_empty_not_an_error(self):
        watch = resolve_watch(self.store, WatchFilter(route_name="Hudson", stop_name="White Plains"))
        self.assertTrue(watch.is_empty)
        self.assertEqual(watch.routes, {})


class TestWatchRegistry(unittest.TestCase):
    """Test the append-only watch registry."""

    def test_add_and_clear(self):
        registry = WatchRegistry()
        registry.add(Watch(filter=WatchFilter(stop_name="Tarrytown")))
        registry.add(Watch(filter=WatchFilter(stop_name="Tarrytown")))
        self.assertEqual(len(registry), 2)
        registry.clear()
        self.assertEqual(list(registry), [])


class TestBroadcastEngine(unittest.TestCase):
    """Test building the departure list."""

    def setUp(self):
        self.store = make_store()
        self.registry = WatchRegistry()
        self.engine = BroadcastEngine(self.store, self.registry)

    def _watch(self, **kwargs):
        self.registry.add(resolve_watch(self.store, WatchFilter(**kwargs)))

    def test_end_to_end(self):
        self.store.set_realtime_updates([
            RealtimeUpdate(trip_id="T1", route_id="R1", stop_sequence=3, departure_delay=120),
        ])
        self._watch(route_name="Hudson", stop_name="Tarrytown")

        departures = self.engine.run(now=NOW)

        self.assertEqual(len(departures), 1)
        departure = departures[0]
        self.assertEqual(departure.stop_id, "S1")
        self.assertEqual(departure.route_id, "R1")
        self.assertEqual(departure.trip_id, "T1")
        self.assertEqual(departure.stop_time, TOMORROW_0815)
        self.assertEqual(departure.stop_delay, 120)
        self.assertEqual(departure.route_name, "Hudson Line")
        self.assertEqual(departure.trip_terminus, "Grand Central")
        self.assertEqual(departure.direction, Direction.OUTBOUND)
        self.assertEqual(departure.stop_name, "Tarrytown")

    def test_without_realtime_delay_is_none(self):
        self._watch(route_name="Hudson", stop_name="Tarrytown")
        departures = self.engine.run(now=NOW)
        self.assertEqual(len(departures), 1)
        self.assertIsNone(departures[0].stop_delay)

    def test_upstream_delay_carries_forward(self):
        self.store.set_realtime_updates([
            RealtimeUpdate(trip_id="T1", route_id="R1", stop_sequence=1, arrival_delay=300),
        ])
        self._watch(route_name="Hudson", stop_name="Tarrytown")
        self.assertEqual(self.engine.run(now=NOW)[0].stop_delay, 300)

    def test_direction_filter(self):
        self._watch(route_name="Hudson", stop_name="Tarrytown", direction=Direction.INBOUND)
        self.assertEqual(self.engine.run(now=NOW), [])

    def test_duplicate_watches_collapse(self):
        self._watch(route_name="Hudson", stop_name="Tarrytown")
        self._watch(stop_name="Tarrytown")
        self.assertEqual(len(self.engine.run(now=NOW)), 1)

    def test_sorted_by_time(self):
        self._watch(stop_name="Tarrytown")
        self._watch(stop_name="White Plains")
        departures = self.engine.run(now=NOW)
        self.assertEqual([d.trip_id for d in departures], ["T1", "T2"])

    def test_idempotent(self):
        self.store.set_realtime_updates([
            RealtimeUpdate(trip_id="T1", route_id="R1", stop_sequence=3, departure_delay=120),
        ])
        self._watch(stop_name="Tarrytown")
        self._watch(stop_name="White Plains")
        self.assertEqual(self.engine.run(now=NOW), self.engine.run(now=NOW))

    def test_window_moves_with_now(self):
        self._watch(route_name="Hudson", stop_name="Tarrytown")
        # T3 runs five days out, so it shows up once that's within three days
        departures = self.engine.run(now=NOW + timedelta(days=3))
        self.assertEqual([d.trip_id for d in departures], ["T3"])

    def test_one_departure_per_service_date(self):
        self._watch(route_name="New Haven", stop_name="Stamford")
        departures = self.engine.run(now=NOW)
        expected = [
            datetime.combine((NOW + timedelta(days=days)).date(), datetime.min.time()).replace(hour=9)
            for days in (1, 2)
        ]
        self.assertEqual([d.trip_id for d in departures], ["T8", "T8"])
        self.assertEqual([d.stop_time for d in departures], expected)
        self.assertEqual(len({d.key for d in departures}), 2)

    def test_malformed_date_skips_only_that_row(self):
        self._watch(route_name="New Haven", stop_name="Stamford")
        with self.assertLogs("trainfeed.broadcast", level="WARNING") as logs:
            departures = self.engine.run(now=NOW)
        self.assertEqual(len(departures), 2)
        self.assertTrue(any("T8" in message for message in logs.output))

    def test_no_watches(self):
        self.assertEqual(self.engine.run(now=NOW), [])

    def test_to_dict(self):
        self._watch(route_name="Hudson", stop_name="Tarrytown")
        payload = self.engine.run(now=NOW)[0].to_dict()
        self.assertEqual(payload["stop_time"], TOMORROW_0815.isoformat())
        self.assertEqual(payload["direction"], 0)
        self.assertIsNone(payload["stop_delay"])


class TestDepartureFeed(unittest.TestCase):
    """Test the caller-facing feed."""

    def setUp(self):
        self.config = FeedConfig(realtime_urls=[], lock_timeout=0.05)
        self.store = make_store()
        self.received = []
        self.feed = DepartureFeed(self.config, store=self.store, on_departures=self.received.append)

    def tearDown(self):
        self.feed.shutdown()

    def test_startup_signals_ready(self):
        on_ready = threading.Event()
        self.feed.on_ready = on_ready.set
        self.feed.startup(start_timers=False)
        self.assertTrue(self.feed.ready.is_set())
        self.assertTrue(on_ready.is_set())

    def test_startup_imports_schedule(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "gtfs.zip")
            with zipfile.ZipFile(path, "w") as zip_file:
                for name, content in gtfs_tables().items():
                    zip_file.writestr(name, content)
            feed = DepartureFeed(FeedConfig(gtfs_path=path, realtime_urls=[]))
            feed.startup(start_timers=False)
        self.assertTrue(feed.store.loaded)
        self.assertTrue(feed.ready.is_set())

    def test_register_and_broadcast(self):
        self.feed.startup(start_timers=False)
        watch = self.feed.register_watch(WatchFilter(route_name="Hudson", stop_name="Tarrytown"))
        self.assertEqual(list(watch.stops), ["S1"])

        departures = self.feed.run_broadcast(now=NOW)

        self.assertEqual([d.trip_id for d in departures], ["T1"])
        self.assertEqual(self.received, [departures])

    def test_clear_watches(self):
        self.feed.register_watch(WatchFilter(stop_name="Tarrytown"))
        self.feed.clear_watches()
        self.assertEqual(self.feed.run_broadcast(now=NOW), [])

    def test_failed_import_is_retried_not_reported_ready(self):
        with tempfile.TemporaryDirectory() as tmp:
            tables = gtfs_tables()
            tables["stops.txt"] = "id,stop_name\nS1,Tarrytown\n"
            path = os.path.join(tmp, "gtfs.zip")
            with zipfile.ZipFile(path, "w") as zip_file:
                for name, content in tables.items():
                    zip_file.writestr(name, content)
            feed = DepartureFeed(FeedConfig(gtfs_path=path, realtime_urls=[]))

            with self.assertRaises(KeyError):
                feed.startup(start_timers=False)
            self.assertFalse(feed.store.loaded)
            with self.assertRaises(KeyError):
                feed.startup(start_timers=False)

        self.assertFalse(feed.ready.is_set())
        self.assertFalse(feed.store.lock.locked)

    def test_register_before_import(self):
        feed = DepartureFeed(self.config, store=ScheduleStore())
        with self.assertRaises(ScheduleNotLoadedError):
            feed.register_watch(WatchFilter(stop_name="Tarrytown"))

    def test_busy_store(self):
        with self.store.lock.hold("import"):
            with self.assertRaises(ScheduleBusyError):
                self.feed.run_broadcast(now=NOW)
            with self.assertRaises(ScheduleBusyError):
                self.feed.register_watch(WatchFilter(stop_name="Tarrytown"))
        self.assertEqual(len(self.feed.registry), 0)

    def test_busy_tick_is_skipped(self):
        with self.store.lock.hold("import"):
            self.feed._broadcast_tick()
        self.assertEqual(self.received, [])

    def test_timers_broadcast_until_shutdown(self):
        self.config.broadcast_interval = 0.01
        self.config.realtime_interval = 0.01
        self.feed.register_watch(WatchFilter(stop_name="Tarrytown"))

        self.feed.startup()
        deadline = time.monotonic() + 2.0
        while not self.received and time.monotonic() < deadline:
            time.sleep(0.01)
        self.feed.shutdown()

        self.assertTrue(self.received)
        self.assertEqual(self.feed._timers, [])


class TestIntervalTimer(unittest.TestCase):
    """Test the periodic trigger."""

    def test_keeps_running_after_errors(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 3:
                done.set()
            raise RuntimeError("tick failed")

        timer = IntervalTimer(0.01, tick, name="test")
        timer.start()
        self.assertTrue(done.wait(2.0))
        timer.cancel()
        timer.join(1.0)
        self.assertFalse(timer.is_alive())
        self.assertTrue(timer.cancelled)


if __name__ == "__main__":
    unittest.main()
