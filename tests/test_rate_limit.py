import threading
import time
import unittest

from tracker.rate_limit import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def time(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


class RateLimiterTestCase(unittest.TestCase):
    def test_first_call_is_not_delayed(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(1.0, time_source=clock.time, sleep=clock.sleep)

        limiter.wait()

        self.assertEqual(clock.sleeps, [])

    def test_consecutive_calls_are_spaced_by_delay(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(1.0, time_source=clock.time, sleep=clock.sleep)

        limiter.wait()
        clock.now += 0.25
        limiter.wait()

        self.assertEqual(len(clock.sleeps), 1)
        self.assertAlmostEqual(clock.sleeps[0], 0.75)

    def test_no_sleep_when_delay_already_elapsed(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(0.5, time_source=clock.time, sleep=clock.sleep)

        limiter.wait()
        clock.now += 2.0
        limiter.wait()

        self.assertEqual(clock.sleeps, [])

    def test_negative_delay_is_clamped(self) -> None:
        self.assertEqual(RateLimiter(-3).delay, 0.0)

    def test_concurrent_waiters_are_granted_in_arrival_order(self) -> None:
        limiter = RateLimiter(0.05)
        granted: list[int] = []
        grant_times: list[float] = []
        lock = threading.Lock()
        threads: list[threading.Thread] = []

        def worker(index: int) -> None:
            limiter.wait()
            with lock:
                granted.append(index)
                grant_times.append(time.monotonic())

        for index in range(5):
            thread = threading.Thread(target=worker, args=(index,))
            thread.start()
            threads.append(thread)
            # Let each thread enqueue before the next one starts.
            time.sleep(0.01)

        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(granted, [0, 1, 2, 3, 4])
        for earlier, later in zip(grant_times, grant_times[1:]):
            self.assertGreaterEqual(later - earlier, 0.03)


if __name__ == "__main__":
    unittest.main()
