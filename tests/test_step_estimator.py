import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from analyzers.step_estimator import (
    PedometerStepCounter,
    effective_stride_length,
    estimate_steps_from_distance,
)
from clients.providers import PedometerProvider, Subscription


@pytest.mark.parametrize("workout_type, speed_kmh, stride", [
    ('Running', 6.0, 0.75),
    ('Running', 8.0, 0.75),
    ('Running', 10.0, 0.85),
    ('Running', 12.0, 0.85),
    ('Running', 14.0, 0.95),
    ('Walking', 3.0, 0.55),
    ('Walking', 4.0, 0.55),
    ('Walking', 5.0, 0.65),
    ('Walking', 6.5, 0.75),
    ('HIIT', 5.0, 0.65),
    ('Yoga', 2.0, 0.6),
    ('Rowing', 2.0, 0.6),
])
def test_effective_stride_length(workout_type, speed_kmh, stride):
    assert effective_stride_length(workout_type, speed_kmh) == stride


@pytest.mark.parametrize("workout_type", ['Cycling', 'Swimming'])
def test_no_stride_for_wheeled_or_swim_types(workout_type):
    assert effective_stride_length(workout_type, 10.0) is None
    assert estimate_steps_from_distance(100.0, 20.0, workout_type) == 0


class TestEstimateSteps(unittest.TestCase):

    def test_running_steps_round_to_nearest(self):
        # 3 m in 1 s is 10.8 km/h: 0.85 m stride
        self.assertEqual(estimate_steps_from_distance(3.0, 1.0, 'Running'), round(3.0 / 0.85))

    def test_walking_slow(self):
        # 1 m in 1 s is 3.6 km/h: 0.55 m stride
        self.assertEqual(estimate_steps_from_distance(1.0, 1.0, 'Walking'), 2)

    def test_zero_distance(self):
        self.assertEqual(estimate_steps_from_distance(0.0, 1.0, 'Running'), 0)

    def test_zero_time_uses_base_stride(self):
        self.assertEqual(estimate_steps_from_distance(7.5, 0.0, 'Running'), 10)


class TestPedometerStepCounter(unittest.TestCase):

    def setUp(self):
        self.pedometer = MagicMock(spec=PedometerProvider)
        self.pedometer.is_available.return_value = True
        self.pedometer.get_count_since.return_value = 1200
        self.subscription = Subscription()
        self.pedometer.subscribe.return_value = self.subscription
        self.counter = PedometerStepCounter(self.pedometer)
        self.now = datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)

    def test_probe_reads_last_hour(self):
        self.assertTrue(self.counter.probe(self.now))
        self.pedometer.get_count_since.assert_called_once_with(self.now - timedelta(hours=1), self.now)

    def test_probe_unavailable(self):
        self.pedometer.is_available.return_value = False
        self.assertFalse(self.counter.probe(self.now))
        self.pedometer.get_count_since.assert_not_called()

    def test_probe_error_means_unavailable(self):
        self.pedometer.get_count_since.side_effect = RuntimeError("permission revoked")
        self.assertFalse(self.counter.probe(self.now))

    def test_first_reading_sets_baseline(self):
        on_steps = MagicMock()
        self.counter.start(0, on_steps)
        deliver = self.pedometer.subscribe.call_args[0][0]

        deliver(5000)
        on_steps.assert_not_called()
        deliver(5010)
        on_steps.assert_called_once_with(10)
        self.assertEqual(self.counter.steps, 10)

    def test_monotonic_guard(self):
        self.counter.start(0, MagicMock())
        readings = [5000, 5010, 5005, 4000, 5010, 5020, 0, 5021]
        totals = []
        for raw in readings:
            self.counter.update(raw)
            totals.append(self.counter.steps)
        self.assertEqual(totals, [0, 10, 10, 10, 10, 20, 20, 21])
        self.assertTrue(all(b >= a for a, b in zip(totals, totals[1:])))

    def test_restart_continues_from_current_steps(self):
        self.counter.start(0, MagicMock())
        self.counter.update(100)
        self.counter.update(150)
        self.counter.stop()
        self.assertFalse(self.subscription.active)

        # Steps taken while stopped are not counted
        self.counter.start(50, MagicMock())
        self.counter.update(400)
        self.assertEqual(self.counter.steps, 50)
        self.assertEqual(self.counter.update(405), 55)


if __name__ == '__main__':
    unittest.main()
