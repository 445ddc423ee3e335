import sys
import pytest

from corla.core.CVR import CVR, CVRAuditInfo, CVRContestInfo, natural_key

#######################################################################################################

class TestCVR:

    def test_from_dict(self):
        cvrs = CVR.from_dict([{'id': 1, 'county_id': 1, 'scanner_id': 1, 'batch_id': 3, 'record_id': 2,
                               'contest_info': {'Governor': ['Alice']}},
                              {'id': 2, 'county_id': 1, 'scanner_id': 1, 'batch_id': '3', 'record_id': 4,
                               'contest_info': [{'contest': 'Governor', 'choices': ['Bob']}]}])
        assert cvrs[0].batch_id == '3'
        assert cvrs[0].contest_info_for('Governor').choices == ['Alice']
        assert cvrs[1].contest_info_for('Governor').choices == ['Bob']
        assert cvrs[1].has_contest('Governor') and not cvrs[1].has_contest('Mayor')

    def test_uri(self, cvr_list, make_acvr):
        cvr = cvr_list[7]
        assert cvr.uri() == 'cvr:1:1-2-3'
        assert cvr.bmi_uri() == 'bmi:1:1-2'
        acvr = make_acvr(cvr)
        assert acvr.uri() == 'acvr:1:1-2-3'
        acvr.revision = 2
        acvr.set_to_reaudited()
        assert acvr.uri() == 'rcvr:1:1-2-3?rev=2'

    def test_audit_pair(self, cvr_list, make_acvr):
        cvr = cvr_list[0]
        assert cvr.is_audit_pair_with(make_acvr(cvr))
        assert not cvr.is_audit_pair_with(make_acvr(cvr_list[1]))
        assert not cvr.is_audit_pair_with(None)

    def test_ordering(self):
        a = CVR(scanner_id=1, batch_id='10', record_id=1)
        b = CVR(scanner_id=1, batch_id='9', record_id=5)
        c = CVR(scanner_id=1, batch_id='9', record_id=2)
        assert sorted([a, b, c]) == [c, b, a]
        assert natural_key('Bin 2') < natural_key('Bin 10')

    def test_generated(self):
        assert CVR(record_type=CVR.RECORD_TYPE.PHANTOM_BALLOT).is_auditor_generated
        assert CVR(record_type=CVR.RECORD_TYPE.PHANTOM_RECORD_ACVR).is_system_generated
        assert not CVR().is_auditor_generated


class TestCVRAuditInfo:

    def test_counts(self, cvr_list):
        info = CVRAuditInfo(cvr_list[0])
        assert info.id == 1
        info.set_multiplicity_by_contest('Governor', 2)
        info.set_count_by_contest('Governor', 2)
        info.set_count_by_contest('Mayor', 1)
        assert info.get_multiplicity_by_contest('Mayor') == 0
        assert info.total_counts() == 3
        with pytest.raises(AssertionError):
            info.set_count_by_contest('Mayor', -1)
        info.reset_counted()
        assert info.get_count_by_contest('Governor') == 0
        assert info.to_dict()['cvr'] == 'cvr:1:1-1-1'

    def test_contest_info(self):
        ci = CVRContestInfo.from_dict({'contest': 'Mayor', 'consensus': 'NO', 'choices': None})
        assert ci.choices == []
        assert ci.to_dict()['consensus'] == CVRContestInfo.CONSENSUS.NO

##########################################################################################
if __name__ == "__main__":
    sys.exit(pytest.main(["-qq"], plugins=None))
