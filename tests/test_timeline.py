"""Tests for the timeline model and its derived values."""

import math

import pytest

from conftest import seg
from ripplecut.history import HistoryManager
from ripplecut.models import ListKind, TimeRange, ViewMode
from ripplecut.timeline import (
    TimelineModel,
    calculate_stats,
    derive_timeline,
    generate_speech_clips,
)


class TestStats:
    def test_confirmed_and_pending_counted_separately(self):
        stats = calculate_stats(100, [seg(10, 20)], [seg(30, 35)])
        assert stats.current_base == 90
        assert stats.remaining == 85
        assert stats.cut_count == 2
        assert stats.total_cut_duration == 15
        assert stats.pending_count == 1

    def test_overlapping_pending_not_double_counted(self):
        stats = calculate_stats(100, [seg(10, 20)], [seg(15, 25)])
        assert stats.remaining == 85
        assert stats.cut_count == 1

    def test_ordering_invariant(self):
        stats = calculate_stats(50, [seg(0, 30), seg(20, 60)], [seg(40, 70)])
        assert 0 <= stats.remaining <= stats.current_base <= stats.original_duration

    def test_non_finite_duration_guarded(self):
        stats = calculate_stats(math.nan, [seg(1, 2)], [])
        assert stats.original_duration == 0
        assert stats.current_base == 0


class TestSpeechClips:
    def test_clips_between_cuts(self):
        clips = generate_speech_clips(60, [seg(10, 20), seg(40, 45)])
        assert [(c.start, c.end) for c in clips] == [(0, 10), (20, 40), (45, 60)]
        assert [c.virtual_start for c in clips] == [0, 10, 30]
        assert clips[-1].id == "clip-last"

    def test_cut_at_start_yields_no_leading_clip(self):
        clips = generate_speech_clips(10, [seg(0, 2)])
        assert [(c.start, c.end) for c in clips] == [(2, 10)]
        assert clips[0].virtual_start == 0

    def test_derive_merges_silences(self):
        derived = derive_timeline(30, [seg(5, 10), seg(8, 15)], [])
        assert derived.merged_silences == (TimeRange(5, 15),)


class TestApply:
    def test_ids_stamped_and_unique(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(1, 2), seg(3, 4)])
        ids = [s.id for s in timeline.confirmed]
        assert None not in ids
        assert len(set(ids)) == 2

    def test_duplicate_ids_restamped(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(1, 2)])
        first = timeline.confirmed[0]
        timeline.apply(ListKind.CONFIRMED, [first, first])
        assert len({s.id for s in timeline.confirmed}) == 2

    def test_invalid_segments_dropped(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(5, 4), seg(math.nan, 3), seg(1, 2)])
        assert [(s.start, s.end) for s in timeline.pending] == [(1, 2)]

    def test_confirmed_write_pushes_history(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(1, 2)])
        assert len(timeline.history) == 1

    def test_pending_write_skips_history(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        assert len(timeline.history) == 0

    def test_version_bumps_and_cache_refreshes(self, timeline):
        before = timeline.version
        assert timeline.stats.current_base == 60
        timeline.apply(ListKind.CONFIRMED, [seg(0, 10)])
        assert timeline.version == before + 1
        assert timeline.stats.current_base == 50

    def test_lists_are_tuples(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(1, 2)])
        assert isinstance(timeline.confirmed, tuple)

    def test_subscribers_notified(self, timeline):
        seen = []
        with timeline.subscribe(seen.append):
            timeline.apply(ListKind.PENDING, [seg(1, 2)])
        timeline.apply(ListKind.PENDING, [])
        assert seen == [timeline]


class TestDetectionResults:
    def test_candidates_inside_confirmed_dropped(self):
        timeline = TimelineModel(original_duration=30)
        timeline.apply(ListKind.CONFIRMED, [seg(5, 15)])
        assert timeline.set_pending_from_detection([seg(8, 12)]) == ()

    def test_candidates_trimmed_against_confirmed(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)])
        pending = timeline.set_pending_from_detection([seg(15, 25, -50.0)])
        assert [(s.start, s.end, s.average_db) for s in pending] == [(20, 25, -50.0)]


class TestCommit:
    def test_commit_merges_and_clears_pending(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)], skip_history=True)
        timeline.apply(ListKind.PENDING, [seg(18, 25), seg(40, 41)])
        assert timeline.commit_pending(0.5)
        assert [(s.start, s.end) for s in timeline.confirmed] == [(10, 25), (40, 41)]
        assert timeline.pending == ()
        assert timeline.committed_intensity == 0.5

    def test_commit_without_pending_is_noop(self, timeline):
        assert not timeline.commit_pending(0.5)
        assert timeline.committed_intensity == 0

    def test_undo_restores_cuts_and_intensity(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        timeline.commit_pending(0.25)
        timeline.apply(ListKind.PENDING, [seg(5, 6)])
        timeline.commit_pending(0.5)

        result = timeline.undo()
        assert result.applied
        assert [(s.start, s.end) for s in timeline.confirmed] == [(1, 2)]
        assert timeline.committed_intensity == 0.25
        assert result.committed_intensity == 0.25


class TestEdits:
    def test_update_keeps_id(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)])
        seg_id = timeline.confirmed[0].id
        updated = timeline.update_segment(ListKind.CONFIRMED, seg_id, end=22)
        assert updated.id == seg_id
        assert timeline.confirmed[0].end == 22

    def test_update_clamps_to_media(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)])
        seg_id = timeline.confirmed[0].id
        timeline.update_segment(ListKind.CONFIRMED, seg_id, start=-5, end=1000)
        assert (timeline.confirmed[0].start, timeline.confirmed[0].end) == (0, 60)

    def test_update_keeps_minimum_width(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(10, 20)])
        seg_id = timeline.pending[0].id
        timeline.update_segment(ListKind.PENDING, seg_id, start=25)
        s = timeline.pending[0]
        assert s.end - s.start == pytest.approx(0.01)

    def test_update_unknown_id(self, timeline):
        assert timeline.update_segment(ListKind.PENDING, 999, start=1) is None

    def test_delete_segments_by_index(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(1, 2), seg(3, 4), seg(5, 6)])
        assert timeline.delete_segments(ListKind.PENDING, [0, 2]) == 2
        assert [(s.start, s.end) for s in timeline.pending] == [(3, 4)]

    def test_ripple_delete_speech_clip(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)])
        assert timeline.delete_speech_clips([0]) == 1
        assert timeline.merged_silences == (TimeRange(0, 20),)
        assert timeline.stats.current_base == 40

    def test_add_confirmed_clipped_to_duration(self, timeline):
        cut = timeline.add_confirmed(59.5)
        assert (cut.start, cut.end) == (59.5, 60)
        assert cut.id is not None

    def test_add_confirmed_at_end_rejected(self, timeline):
        assert timeline.add_confirmed(60) is None


class TestGestures:
    def test_drag_records_single_history_entry(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(10, 20)], skip_history=True)
        seg_id = timeline.confirmed[0].id

        timeline.begin_gesture()
        for end in (21, 22, 23, 24):
            timeline.update_segment(ListKind.CONFIRMED, seg_id, end=end, skip_history=True)
        assert timeline.end_gesture()

        assert len(timeline.history) == 1
        timeline.undo()
        assert (timeline.confirmed[0].start, timeline.confirmed[0].end) == (10, 20)

    def test_gesture_without_change_records_nothing(self, timeline):
        timeline.begin_gesture()
        assert not timeline.end_gesture()
        assert len(timeline.history) == 0


class TestUndo:
    def test_empty_history_reports_noop(self, timeline):
        result = timeline.undo()
        assert not result.applied
        assert result.message == "Nothing to undo"

    def test_history_capped(self):
        timeline = TimelineModel(original_duration=100, history=HistoryManager(limit=30))
        for i in range(35):
            timeline.add_confirmed(float(i * 2), 1.0)
        assert len(timeline.history) == 30
        for _ in range(30):
            assert timeline.undo().applied
        assert not timeline.undo().applied
        assert len(timeline.confirmed) == 5


class TestModes:
    def test_virtual_duration_by_mode(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(0, 10)])
        timeline.apply(ListKind.PENDING, [seg(20, 25)])
        assert timeline.virtual_duration == 45
        assert timeline.layout_duration == 60
        timeline.view_mode = ViewMode.FRAGMENTED
        assert timeline.virtual_duration == 50
        assert timeline.layout_duration == 50

    def test_mapper_follows_mode(self, timeline):
        timeline.apply(ListKind.CONFIRMED, [seg(5, 15)])
        assert timeline.mapper.to_virtual(20) == 20
        timeline.view_mode = ViewMode.FRAGMENTED
        assert timeline.mapper.to_virtual(20) == 10


class TestReset:
    def test_reset_clears_everything(self, timeline):
        timeline.apply(ListKind.PENDING, [seg(1, 2)])
        timeline.commit_pending(0.5)
        timeline.reset(30)
        assert timeline.confirmed == ()
        assert timeline.pending == ()
        assert len(timeline.history) == 0
        assert timeline.committed_intensity == 0
        assert timeline.original_duration == 30
