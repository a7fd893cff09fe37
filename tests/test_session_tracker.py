import math
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from clients.providers import (
    BatteryProvider,
    LocalMirror,
    LocationProvider,
    PedometerProvider,
    Subscription,
    WorkoutRepository,
)
from clients.replay import ManualTimerService, ReplayLocationProvider, SimulatedClock
from clients.workout_store import JsonLocalMirror
from models.workout import LocationSample, ProgramLink, SessionState, UserProfile
from tracking.exceptions import (
    FixAcquisitionError,
    InvalidTransitionError,
    LocationPermissionError,
    PermissionReason,
    StreamStartError,
)
from tracking.session_tracker import FinishOutcome, PrematureFinishChoice, SaveOutcome, SessionTracker

METERS_PER_DEGREE = 6371000 * math.pi / 180
T0 = 1_700_000_000.0


def walk(count, start_t=0.0, start_m=0.0, step_m=3.0, dt=1.0):
    """Samples heading north at a steady pace."""
    return [
        LocationSample(
            latitude=45.0 + (start_m + i * step_m) / METERS_PER_DEGREE,
            longitude=7.0,
            accuracy=5.0,
            timestamp=T0 + start_t + i * dt,
        )
        for i in range(count)
    ]


class TrackerTestCase(unittest.TestCase):

    workout_type = 'Running'

    def setUp(self):
        self.clock = SimulatedClock(T0)
        self.timers = ManualTimerService(self.clock)
        self.provider = ReplayLocationProvider(walk(1))
        self.battery = MagicMock(spec=BatteryProvider)
        self.battery.get_level.return_value = 0.8
        self.repository = MagicMock(spec=WorkoutRepository)
        self.repository.save.return_value = 'w-1'
        self.mirror = MagicMock(spec=LocalMirror)
        self.mirror.save_recent.return_value = True
        self.sleep = MagicMock()
        self.events = []
        self.tracker = self.make_tracker()

    def make_tracker(self, **overrides):
        kwargs = dict(
            clock=self.clock,
            timer_service=self.timers,
            repository=self.repository,
            local_mirror=self.mirror,
            battery_provider=self.battery,
            user=UserProfile('alice', 70.0),
            sleep=self.sleep,
        )
        kwargs.update(overrides)
        tracker = SessionTracker(self.workout_type, self.provider, **kwargs)
        tracker.add_listener(lambda state, stats: self.events.append((state, stats)))
        return tracker

    def feed(self, samples):
        outcomes = []
        for sample in samples:
            self.timers.advance_to(sample.timestamp)
            outcomes.append(self.provider.emit(sample))
        return outcomes

    def start_tracking(self):
        self.tracker.initialize()
        self.tracker.start()

    def finish_long_workout(self):
        """A 40 s, 117 m run, long enough to save without confirmation."""
        self.start_tracking()
        self.feed(walk(40))
        self.assertIs(self.tracker.finish(), FinishOutcome.FINISHED)


class TestInitialize(TrackerTestCase):

    def test_initialize_gets_fix(self):
        fix = self.tracker.initialize()
        self.assertEqual(fix, self.provider.samples[0])
        self.assertIs(self.tracker.state, SessionState.INITIALIZING)
        self.assertEqual(self.tracker.initial_fix, fix)

    def test_permission_denied_returns_to_idle(self):
        self.provider.permission_granted = False
        with self.assertRaises(LocationPermissionError) as ctx:
            self.tracker.initialize()
        self.assertEqual(ctx.exception.reason, PermissionReason.PERMISSION_DENIED)
        self.assertIs(self.tracker.state, SessionState.IDLE)
        self.assertEqual([s for s, _ in self.events], [SessionState.INITIALIZING, SessionState.IDLE])

    def test_services_disabled(self):
        self.provider.services_on = False
        with self.assertRaises(LocationPermissionError) as ctx:
            self.tracker.initialize()
        self.assertEqual(ctx.exception.reason, PermissionReason.SERVICES_DISABLED)

    def test_no_fix_returns_to_idle(self):
        self.provider.samples = []
        with self.assertRaises(FixAcquisitionError):
            self.tracker.initialize()
        self.assertIs(self.tracker.state, SessionState.IDLE)
        self.assertEqual(self.sleep.call_count, 2)

    def test_can_retry_after_failure(self):
        self.provider.permission_granted = False
        with self.assertRaises(LocationPermissionError):
            self.tracker.initialize()
        self.provider.permission_granted = True
        self.tracker.initialize()
        self.assertIs(self.tracker.state, SessionState.INITIALIZING)


class TestInvalidTransitions(TrackerTestCase):

    def test_commands_in_wrong_state(self):
        with self.assertRaises(InvalidTransitionError):
            self.tracker.start()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.pause()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.finish()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.save()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.discard()

        self.start_tracking()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.resume()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.initialize()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.save()

    def test_resolution_needs_pending_finish(self):
        self.start_tracking()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.resolve_premature_finish(PrematureFinishChoice.FORCE_FINISH)


class TestActiveSession(TrackerTestCase):

    def test_start_opens_streams(self):
        self.start_tracking()
        self.assertIs(self.tracker.state, SessionState.ACTIVE)
        self.assertTrue(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 1)
        self.assertEqual(self.tracker.step_source, 'gps')
        self.assertEqual(self.tracker.stats.distance, 0.0)
        self.assertEqual(self.tracker.route, [])

    def test_ticker_advances_duration_between_samples(self):
        self.start_tracking()
        self.timers.advance(5)
        stats = self.tracker.stats
        self.assertEqual(stats.duration, 5)
        self.assertAlmostEqual(stats.calories, 8.0 * 70.0 * 5 / 3600)
        self.assertIsNone(stats.pace)
        # One notification per tick
        self.assertEqual([s.duration for _, s in self.events[-5:]], [1, 2, 3, 4, 5])

    def test_samples_update_distance(self):
        self.start_tracking()
        outcomes = self.feed(walk(6))
        self.assertEqual(len(outcomes), 6)
        self.assertEqual(len(self.tracker.route), 6)
        self.assertAlmostEqual(self.tracker.stats.distance, 15.0, places=5)
        self.assertEqual(self.tracker.stats.duration, 5)
        self.assertGreater(self.tracker.stats.steps, 0)

    def test_listener_failure_does_not_break_tracking(self):
        self.tracker.add_listener(MagicMock(side_effect=RuntimeError("render failed")))
        self.start_tracking()
        self.feed(walk(3))
        self.assertEqual(len(self.tracker.route), 3)

    def test_removed_listener_is_not_called(self):
        listener = MagicMock()
        subscription = self.tracker.add_listener(listener)
        subscription.remove()
        self.start_tracking()
        listener.assert_not_called()

    def test_stream_start_failure_releases_everything(self):
        self.provider.subscribe = MagicMock(side_effect=RuntimeError("gps off"))
        self.tracker.initialize()
        with self.assertRaises(StreamStartError):
            self.tracker.start()
        self.assertIs(self.tracker.state, SessionState.INITIALIZING)
        self.assertEqual(self.timers.active_timers, 0)

    def test_on_foreground_restarts_killed_stream(self):
        self.start_tracking()
        self.assertFalse(self.tracker.on_foreground())

        self.provider.kill_stream()
        self.assertTrue(self.tracker.on_foreground())
        self.assertTrue(self.provider.subscribed)
        self.assertEqual(len(self.provider.subscribe_calls), 2)

    def test_on_foreground_ignored_when_paused(self):
        self.start_tracking()
        self.tracker.pause()
        self.assertFalse(self.tracker.on_foreground())
        self.assertFalse(self.provider.subscribed)


class TestPauseResume(TrackerTestCase):

    def test_pause_freezes_stats_and_releases_streams(self):
        self.start_tracking()
        self.feed(walk(6))
        self.tracker.pause()
        frozen = self.tracker.stats

        self.assertIs(self.tracker.state, SessionState.PAUSED)
        self.assertFalse(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 0)

        self.timers.advance(60)
        dropped = self.feed(walk(3, start_t=70, start_m=100))
        self.assertEqual(dropped, [None, None, None])
        self.assertEqual(self.tracker.stats, frozen)

    def test_resume_rereads_battery_and_resubscribes(self):
        self.start_tracking()
        self.tracker.pause()
        self.battery.get_level.return_value = 0.1
        self.tracker.resume()

        self.assertIs(self.tracker.state, SessionState.ACTIVE)
        self.assertEqual(self.battery.get_level.call_count, 2)
        self.assertEqual(len(self.provider.subscribe_calls), 2)
        self.assertEqual(self.provider.subscribe_calls[-1].min_time_interval_ms, 3000)
        self.assertEqual(self.timers.active_timers, 1)

    def test_duration_excludes_paused_time(self):
        self.start_tracking()
        self.feed(walk(11))
        self.tracker.pause()
        self.assertEqual(self.tracker.stats.duration, 10)

        self.timers.advance(120)
        self.tracker.resume()
        self.timers.advance(5)
        self.assertEqual(self.tracker.stats.duration, 15)

    def test_no_distance_across_pause(self):
        self.start_tracking()
        self.feed(walk(6))
        self.tracker.pause()
        distance_at_pause = self.tracker.stats.distance

        self.timers.advance(60)
        self.tracker.resume()
        # Resumed 200 m further along
        after = walk(3, start_t=70, start_m=215)
        self.feed(after)

        self.assertAlmostEqual(self.tracker.stats.distance, distance_at_pause + 6.0, places=5)
        self.assertEqual(len(self.tracker.route), 9)

    def test_distance_and_duration_monotonic(self):
        self.start_tracking()
        samples = walk(10) + walk(10, start_t=40, start_m=100)
        history = []
        self.tracker.add_listener(lambda state, stats: history.append(stats))
        self.feed(samples[:10])
        self.tracker.pause()
        self.timers.advance(20)
        self.tracker.resume()
        self.feed(samples[10:])

        for before, after in zip(history, history[1:]):
            self.assertGreaterEqual(after.distance, before.distance)
            self.assertGreaterEqual(after.duration, before.duration)


class TestFinish(TrackerTestCase):

    def test_short_route_needs_resolution(self):
        self.start_tracking()
        self.feed(walk(3))
        self.assertIs(self.tracker.finish(), FinishOutcome.NEEDS_RESOLUTION)
        self.assertIs(self.tracker.state, SessionState.ACTIVE)
        self.assertTrue(self.tracker.awaiting_resolution)
        self.repository.save.assert_not_called()

    def test_keep_going(self):
        self.start_tracking()
        self.tracker.finish()
        self.assertIs(self.tracker.resolve_premature_finish(PrematureFinishChoice.KEEP_GOING), SessionState.ACTIVE)
        self.assertTrue(self.provider.subscribed)

    def test_keep_going_from_pause_resumes(self):
        self.start_tracking()
        self.tracker.pause()
        self.tracker.finish()
        self.assertIs(self.tracker.resolve_premature_finish(PrematureFinishChoice.KEEP_GOING), SessionState.ACTIVE)

    def test_discard_choice(self):
        self.start_tracking()
        self.tracker.finish()
        self.assertIs(self.tracker.resolve_premature_finish(PrematureFinishChoice.DISCARD), SessionState.DISCARDED)
        self.assertFalse(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 0)
        self.assertIsNone(self.tracker.record)

    def test_force_finish(self):
        self.start_tracking()
        self.feed(walk(2))
        self.tracker.finish()
        self.assertIs(self.tracker.resolve_premature_finish(PrematureFinishChoice.FORCE_FINISH), SessionState.FINISHING)
        self.assertEqual(len(self.tracker.record.route), 2)

    def test_finish_assembles_record(self):
        self.finish_long_workout()
        record = self.tracker.record
        stats = self.tracker.stats

        self.assertIs(self.tracker.state, SessionState.FINISHING)
        self.assertFalse(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 0)
        self.assertEqual(record.workout_type, 'Running')
        self.assertEqual(record.user_id, 'alice')
        self.assertEqual(record.distance, stats.distance)
        self.assertEqual(record.duration, 39)
        self.assertEqual(record.steps, stats.steps)
        self.assertEqual(len(record.route), 40)
        self.assertEqual(record.start_time.timestamp(), T0)
        self.assertIsNone(record.record_id)

    def test_stats_frozen_after_finish(self):
        self.finish_long_workout()
        frozen = self.tracker.stats
        self.timers.advance(30)
        self.assertEqual(self.tracker.stats, frozen)


class TestSave(TrackerTestCase):

    def test_successful_save(self):
        self.finish_long_workout()
        self.assertIs(self.tracker.save(), SaveOutcome.SAVED)

        self.assertIs(self.tracker.state, SessionState.COMPLETED)
        self.assertFalse(self.tracker.pending_save)
        self.assertEqual(self.tracker.record.record_id, 'w-1')
        self.repository.save.assert_called_once()
        mirrored = self.mirror.save_recent.call_args
        self.assertEqual(mirrored[0][0].record_id, 'w-1')
        self.assertIsNone(mirrored[1]['replace_id'])

    def test_saved_workout_cannot_be_saved_or_discarded_again(self):
        self.finish_long_workout()
        self.tracker.save()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.save()
        with self.assertRaises(InvalidTransitionError):
            self.tracker.discard()

    def test_failed_save_is_pending_and_mirrored(self):
        self.repository.save.side_effect = ConnectionError("offline")
        self.finish_long_workout()

        self.assertIs(self.tracker.save(), SaveOutcome.PENDING)
        self.assertIs(self.tracker.state, SessionState.COMPLETED)
        self.assertTrue(self.tracker.pending_save)
        self.assertIsNotNone(self.tracker.record)

        local_record = self.mirror.save_recent.call_args[0][0]
        self.assertTrue(local_record.record_id.startswith('local_'))

        # A second failure does not mirror again
        self.assertIs(self.tracker.save(), SaveOutcome.PENDING)
        self.assertEqual(self.mirror.save_recent.call_count, 1)

    def test_retry_succeeds_and_replaces_local_copy(self):
        self.repository.save.side_effect = [ConnectionError("offline"), 'w-2']
        self.finish_long_workout()
        self.tracker.save()
        local_id = self.mirror.save_recent.call_args[0][0].record_id

        self.assertIs(self.tracker.save(), SaveOutcome.SAVED)
        self.assertFalse(self.tracker.pending_save)
        self.assertEqual(self.tracker.record.record_id, 'w-2')
        args, kwargs = self.mirror.save_recent.call_args
        self.assertEqual(args[0].record_id, 'w-2')
        self.assertEqual(kwargs['replace_id'], local_id)

    def test_mirror_failure_does_not_lose_record(self):
        self.repository.save.side_effect = ConnectionError("offline")
        self.mirror.save_recent.side_effect = OSError("disk full")
        self.finish_long_workout()
        self.assertIs(self.tracker.save(), SaveOutcome.PENDING)
        self.assertIsNotNone(self.tracker.record)

    def test_unauthenticated_save_is_pending(self):
        self.tracker = self.make_tracker(user=UserProfile(None, 70.0))
        self.finish_long_workout()
        self.assertIs(self.tracker.save(), SaveOutcome.PENDING)
        self.repository.save.assert_not_called()
        self.assertIsNone(self.mirror.save_recent.call_args[0][0].user_id)

    def test_pending_record_can_be_discarded(self):
        self.repository.save.side_effect = ConnectionError("offline")
        self.finish_long_workout()
        self.tracker.save()
        local_id = self.mirror.save_recent.call_args[0][0].record_id
        self.assertTrue(local_id.startswith('local_'))

        self.tracker.discard()
        self.assertIs(self.tracker.state, SessionState.DISCARDED)
        self.assertFalse(self.tracker.pending_save)
        self.assertIsNone(self.tracker.record)
        self.mirror.remove.assert_called_once_with(local_id)

    def test_discard_clears_local_copy_from_disk(self):
        with tempfile.TemporaryDirectory() as tmp:
            mirror = JsonLocalMirror(Path(tmp) / 'recent.json')
            self.tracker = self.make_tracker(local_mirror=mirror)
            self.repository.save.side_effect = ConnectionError("offline")
            self.finish_long_workout()

            self.assertIs(self.tracker.save(), SaveOutcome.PENDING)
            self.assertEqual(len(mirror.get_recent('alice')), 1)

            self.tracker.discard()
            self.assertEqual(mirror.get_recent('alice'), [])
            self.assertIsNone(mirror.get_last('alice'))

    def test_discard_survives_mirror_failure(self):
        self.repository.save.side_effect = ConnectionError("offline")
        self.mirror.remove.side_effect = OSError("disk full")
        self.finish_long_workout()
        self.tracker.save()
        self.tracker.discard()
        self.assertIs(self.tracker.state, SessionState.DISCARDED)

    def test_discard_without_local_copy_leaves_mirror_alone(self):
        self.start_tracking()
        self.feed(walk(6))
        self.tracker.discard()
        self.mirror.remove.assert_not_called()

    def test_short_workout_needs_confirmation(self):
        self.start_tracking()
        self.feed(walk(6))
        self.tracker.finish()
        self.assertIs(self.tracker.save(), SaveOutcome.NEEDS_CONFIRMATION)
        self.assertIs(self.tracker.state, SessionState.FINISHING)
        self.repository.save.assert_not_called()

        self.assertIs(self.tracker.save(confirm_short=True), SaveOutcome.SAVED)

    def test_program_workout_skips_confirmation(self):
        self.tracker = self.make_tracker(program=ProgramLink('couch-to-5k', 'up-1', 0, 2))
        self.start_tracking()
        self.feed(walk(6))
        self.tracker.finish()
        self.assertIs(self.tracker.save(), SaveOutcome.SAVED)
        self.assertEqual(self.repository.save.call_args[0][0].program.workout_index, 2)


class TestDiscardAndClose(TrackerTestCase):

    def test_discard_while_active(self):
        self.start_tracking()
        self.feed(walk(3))
        self.tracker.discard()
        self.assertIs(self.tracker.state, SessionState.DISCARDED)
        self.assertFalse(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 0)
        self.repository.save.assert_not_called()

    def test_discard_while_finishing(self):
        self.finish_long_workout()
        self.tracker.discard()
        self.assertIs(self.tracker.state, SessionState.DISCARDED)
        self.assertIsNone(self.tracker.record)

    def test_close_releases_active_session(self):
        with self.tracker:
            self.start_tracking()
        self.assertIs(self.tracker.state, SessionState.DISCARDED)
        self.assertFalse(self.provider.subscribed)
        self.assertEqual(self.timers.active_timers, 0)

    def test_close_keeps_finished_record(self):
        self.finish_long_workout()
        self.tracker.close()
        self.assertIs(self.tracker.state, SessionState.FINISHING)
        self.assertIsNotNone(self.tracker.record)


class TestPedometerSteps(TrackerTestCase):

    def setUp(self):
        super().setUp()
        self.pedometer = MagicMock(spec=PedometerProvider)
        self.pedometer.is_available.return_value = True
        self.pedometer.get_count_since.return_value = 0
        self.pedometer_subscription = Subscription()
        self.pedometer.subscribe.return_value = self.pedometer_subscription
        self.tracker = self.make_tracker(pedometer=self.pedometer)

    def deliver(self, raw):
        self.pedometer.subscribe.call_args[0][0](raw)

    def test_pedometer_counts_steps(self):
        self.start_tracking()
        self.assertEqual(self.tracker.step_source, 'pedometer')

        self.feed(walk(5))
        self.assertEqual(self.tracker.stats.steps, 0)

        self.deliver(1000)
        self.deliver(1012)
        self.assertEqual(self.tracker.stats.steps, 12)
        self.deliver(1005)
        self.assertEqual(self.tracker.stats.steps, 12)

    def test_pause_drops_pedometer_and_resume_continues(self):
        self.start_tracking()
        self.deliver(1000)
        self.deliver(1020)
        self.tracker.pause()
        self.assertFalse(self.pedometer_subscription.active)

        self.pedometer.subscribe.return_value = Subscription()
        self.tracker.resume()
        self.deliver(1300)
        self.deliver(1305)
        self.assertEqual(self.tracker.stats.steps, 25)

    def test_unavailable_pedometer_falls_back_to_gps(self):
        self.pedometer.is_available.return_value = False
        self.start_tracking()
        self.assertEqual(self.tracker.step_source, 'gps')
        self.pedometer.subscribe.assert_not_called()

    def test_subscribe_failure_falls_back_to_gps(self):
        self.pedometer.subscribe.side_effect = RuntimeError("sensor busy")
        self.start_tracking()
        self.assertIs(self.tracker.state, SessionState.ACTIVE)
        self.assertEqual(self.tracker.step_source, 'gps')
        self.feed(walk(3))
        self.assertGreater(self.tracker.stats.steps, 0)


class TestProviderInterfaces(unittest.TestCase):

    def test_interfaces_cannot_be_instantiated(self):
        for interface in (LocationProvider, BatteryProvider, PedometerProvider, WorkoutRepository, LocalMirror):
            with self.assertRaises(TypeError):
                interface()

    def test_incomplete_provider_is_rejected(self):
        class HalfProvider(LocationProvider):
            def services_enabled(self):
                return True

        with self.assertRaises(TypeError):
            HalfProvider()


if __name__ == '__main__':
    unittest.main()
