import sys
import pytest

from corla.core.BallotSelection import (BallotManifestInfo, BallotSelection, BallotSequencer,
                                        MissingBallotManifestException, Segment)
from corla.core.CVR import CVRAuditInfo

#######################################################################################################

class TestBallotManifestInfo:

    def test_positions(self):
        bmi = BallotManifestInfo(1, 1, '2', 5, 'Bin 2', 6, 10)
        bmi.set_ultimate(21)
        assert (bmi.ultimate_sequence_start, bmi.ultimate_sequence_end) == (21, 25)
        assert bmi.is_holding(25) and not bmi.is_holding(26)
        assert bmi.translate_rand(23) == 3
        assert bmi.ballot_position(7) == 2
        assert bmi.imprinted_id(3) == '1-2-3'
        assert bmi.uri() == 'bmi:1:1-2'


class TestBallotSelection:

    def test_project_ultimate_sequence(self, manifest_segments):
        shuffled = [manifest_segments[2], manifest_segments[1], manifest_segments[0]]
        ordered = BallotSelection.project_ultimate_sequence(shuffled)
        assert ordered == manifest_segments
        assert [(b.ultimate_sequence_start, b.ultimate_sequence_end) for b in ordered] == \
               [(1, 5), (6, 10), (11, 20)]

    def test_natural_batch_order(self):
        a = BallotManifestInfo(1, 1, '10', 2, 'x', 1, 2)
        b = BallotManifestInfo(1, 1, '9', 2, 'x', 1, 2)
        assert BallotSelection.project_ultimate_sequence([a, b]) == [b, a]

    def test_select_segment(self, manifest_segments):
        projected = BallotSelection.project_ultimate_sequence(manifest_segments)
        assert BallotSelection.select_segment(6, projected) is manifest_segments[1]
        assert BallotSelection.select_segment(20, projected) is manifest_segments[2]
        with pytest.raises(MissingBallotManifestException):
            BallotSelection.select_segment(21, projected)

    def test_random_selection(self, governor_result, seed, manifest, cvr_lookup):
        selection = BallotSelection.random_selection(governor_result, seed, 0, 13, manifest, cvr_lookup)
        assert len(selection.generated_numbers) == 13
        assert selection.domain_size == 20
        # cvr ids were assigned in manifest order, so each draw is the id of its ballot
        assert selection.contest_cvr_ids() == selection.generated_numbers
        assert sorted(t.rand_sequence_position for t in selection.all_tributes()) == list(range(13))
        for county_id in (1, 2):
            segment = selection.for_county(county_id)
            assert all(c.county_id == county_id for c in segment.cvrs)
            assert [t.county_id for t in segment.tributes] == [county_id] * len(segment.tributes)

    def test_selection_extends(self, governor_result, seed, manifest, cvr_lookup):
        whole = BallotSelection.random_selection(governor_result, seed, 0, 13, manifest, cvr_lookup)
        first = BallotSelection.random_selection(governor_result, seed, 0, 5, manifest, cvr_lookup)
        rest = BallotSelection.random_selection(governor_result, seed, 5, 13, manifest, cvr_lookup)
        assert first.contest_cvr_ids() + rest.contest_cvr_ids() == whole.contest_cvr_ids()

    def test_empty_selection(self, governor_result, seed, manifest, cvr_lookup):
        selection = BallotSelection.random_selection(governor_result, seed, 13, 13, manifest, cvr_lookup)
        assert selection.generated_numbers == []
        assert selection.contest_cvr_ids() == []
        assert sorted(selection.segments) == [1, 2]

    def test_combine_segments(self):
        a, b = Segment(), Segment()
        a.add_cvr_ids([1, 2])
        b.add_cvr_ids([2, 3])
        combined = BallotSelection.combine_segments([a, None, b])
        assert combined.audit_sequence() == [1, 2, 2, 3]

    def test_audited_prefix_length(self, store, cvr_lookup, make_acvr):
        for cvr_id in (1, 2):
            store.save(CVRAuditInfo(cvr_lookup.get(cvr_id)))
        store.get(1, CVRAuditInfo).set_acvr(make_acvr(cvr_lookup.get(1)))
        assert BallotSelection.audited_prefix_length([1, 1, 2, 1], store) == 2
        assert BallotSelection.audited_prefix_length([2, 1], store) == 0
        assert BallotSelection.audited_prefix_length([], store) == 0


class TestBallotSequencer:

    def test_sort_and_deduplicate(self, manifest, cvr_lookup):
        cvrs = cvr_lookup.by_ids([12, 6, 3, 6, 4])
        ordered = BallotSequencer.sort_and_deduplicate(cvrs, manifest)
        assert [c.id for c in ordered] == [3, 4, 6, 12]

    def test_unknown_batch_dropped(self, manifest, cvr_lookup):
        stray = cvr_lookup.get(3)
        stray.batch_id = '99'
        assert BallotSequencer.sort_and_deduplicate([stray, cvr_lookup.get(1)], manifest) == [cvr_lookup.get(1)]

##########################################################################################
if __name__ == "__main__":
    sys.exit(pytest.main(["-qq"], plugins=None))
