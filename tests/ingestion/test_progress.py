"""Progress percentage and completion estimate."""

from datetime import datetime, timedelta, timezone

from hypothesis import given
from hypothesis import strategies as st

from coop_ingestion.domain.progress import estimate_completion, progress_percentage
from coop_ingestion.domain.types import ImportStatus

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestProgressPercentage:
    def test_floor_of_ratio(self):
        assert progress_percentage(1, 3, ImportStatus.IMPORTING) == 33
        assert progress_percentage(2, 3, ImportStatus.IMPORTING) == 66

    def test_zero_total_is_zero(self):
        assert progress_percentage(0, 0, ImportStatus.IMPORTING) == 0

    def test_completed_is_always_100(self):
        assert progress_percentage(0, 0, ImportStatus.COMPLETED) == 100
        assert progress_percentage(3, 10, ImportStatus.COMPLETED) == 100

    @given(
        processed=st.integers(min_value=-5, max_value=10_000),
        total=st.integers(min_value=-5, max_value=10_000),
        status=st.sampled_from(list(ImportStatus)),
    )
    def test_always_within_bounds(self, processed, total, status):
        assert 0 <= progress_percentage(processed, total, status) <= 100

    @given(
        total=st.integers(min_value=1, max_value=5_000),
        steps=st.lists(st.integers(min_value=0, max_value=5_000), max_size=20),
    )
    def test_monotonic_in_processed_rows(self, total, steps):
        processed = sorted(min(s, total) for s in steps)
        values = [progress_percentage(p, total, ImportStatus.IMPORTING) for p in processed]
        assert values == sorted(values)


class TestEstimateCompletion:
    def test_none_before_start_or_progress(self):
        assert estimate_completion(None, T0, 5, 10) is None
        assert estimate_completion(T0, T0, 0, 10) is None

    def test_now_when_nothing_remains(self):
        now = T0 + timedelta(seconds=30)
        assert estimate_completion(T0, now, 10, 10) == now

    def test_linear_extrapolation(self):
        now = T0 + timedelta(seconds=10)
        # 10 rows in 10s, 30 remaining -> 30s more
        assert estimate_completion(T0, now, 10, 40) == now + timedelta(seconds=30)

    def test_naive_start_is_treated_as_utc(self):
        naive_start = T0.replace(tzinfo=None)
        now = T0 + timedelta(seconds=4)
        assert estimate_completion(naive_start, now, 2, 4) == now + timedelta(seconds=4)
