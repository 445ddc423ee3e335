import sys
import pytest

from corla.core.ASM import ASM, IllegalTransitionError
from corla.core.Audit import Audit
from corla.core.ComparisonAudit import ComparisonAudit
from corla.core.Dashboard import CountyDashboard, DoSDashboard
from corla.core.StartAuditRound import StartAuditRound

@pytest.fixture
def sar(dos_dashboard, store, manifest, cvr_lookup, contests):
    return StartAuditRound(dos_dashboard, store, manifest, cvr_lookup, contests)

def board_state(store, cdb):
    return store.asm.current_state(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity)

def county_state(store, cdb):
    return store.asm.current_state(ASM.KIND.COUNTY_DASHBOARD, cdb.identity)

def finish_round(sar, store, cvr_lookup, cdb, make_acvr):
    '''
    audit every ballot of the county's round not yet audited as read by the tabulator, then
    close and sign off the round
    '''
    for cvr in cvr_lookup.by_ids(cdb.current_round().ballot_sequence):
        if not sar.controller.audited(cdb, cvr):
            assert sar.controller.submit_audit_cvr(cdb, cvr, make_acvr(cvr))
    cdb.end_round()
    S, E = ASM.AUDIT_BOARD_STATE, ASM.AUDIT_BOARD_EVENT
    if board_state(store, cdb) == S.ROUND_IN_PROGRESS_NO_AUDIT_BOARD:
        store.asm.step(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity, E.SIGN_IN_AUDIT_BOARD_EVENT)
    if board_state(store, cdb) == S.ROUND_IN_PROGRESS:
        store.asm.step(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity, E.ROUND_COMPLETE_EVENT)
    store.asm.step(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity, E.ROUND_SIGN_OFF_EVENT)

#######################################################################################################

class TestStartAuditRound:

    def test_count_contests(self, sar):
        results = {r.contest_name: r for r in sar.count_contests()}
        assert set(results) == {'Governor', 'Mayor'}
        assert results['Governor'].ballot_count == 20
        assert results['Governor'].counties == {1, 2}
        assert results['Mayor'].ballot_count == 10
        assert results['Mayor'].winners == {'Carol'}
        assert results['Mayor'].audit_reason == Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST

    def test_initialize_audit_data(self, sar, store, county_dashboards):
        audits = sar.initialize_audit_data()
        assert {ca.contest_name for ca in audits} == {'Governor', 'Mayor'}
        assert store.get_all(ComparisonAudit) == audits
        adams, boulder = county_dashboards
        assert {ca.contest_name for ca in adams.audits} == {'Governor', 'Mayor'}
        assert [ca.contest_name for ca in boulder.audits] == ['Governor']
        assert county_state(store, adams) == ASM.COUNTY_STATE.COUNTY_AUDIT_UNDERWAY

    def test_first_round(self, sar, store, county_dashboards):
        states = sar.start_round()
        assert store.asm.current_state(ASM.KIND.DOS_DASHBOARD) == ASM.DOS_STATE.DOS_AUDIT_ONGOING
        adams = county_dashboards[0]
        assert states[1] == ASM.AUDIT_BOARD_STATE.ROUND_IN_PROGRESS_NO_AUDIT_BOARD
        assert board_state(store, adams) == states[1]
        governor = store.get('Governor', ComparisonAudit)
        mayor = store.get('Mayor', ComparisonAudit)
        assert len(governor.contest_cvr_ids) == 13
        assert len(mayor.contest_cvr_ids) == 16
        the_round = adams.current_round()
        expected = [i for i in governor.contest_cvr_ids if i <= 10] + mayor.contest_cvr_ids
        assert the_round.audit_subsequence == expected
        assert sorted(the_round.ballot_sequence) == sorted(set(expected))
        for state in states.values():
            assert state in (ASM.AUDIT_BOARD_STATE.ROUND_IN_PROGRESS_NO_AUDIT_BOARD,
                             ASM.AUDIT_BOARD_STATE.WAITING_FOR_ROUND_SIGN_OFF)

    def test_same_seed_same_ballots(self, sar, store, county_dashboards, seed):
        sar.start_round()
        governor = store.get('Governor', ComparisonAudit)
        fresh = ComparisonAudit(governor.contest_result, 0.05)
        selection, = sar.make_selections([fresh], seed)
        assert selection.contest_cvr_ids() == governor.contest_cvr_ids
        assert fresh.contest_cvr_ids == governor.contest_cvr_ids

    def test_audit_to_completion(self, sar, store, county_dashboards, cvr_lookup, make_acvr):
        sar.start_round()
        for cdb in county_dashboards:
            finish_round(sar, store, cvr_lookup, cdb, make_acvr)
        for ca in store.get_all(ComparisonAudit):
            assert ca.audit_status == Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED
            assert ca.risk_measurement() <= ca.risk_limit

        states = sar.start_round()
        assert states == {1: ASM.AUDIT_BOARD_STATE.AUDIT_COMPLETE, 2: ASM.AUDIT_BOARD_STATE.AUDIT_COMPLETE}
        for cdb in county_dashboards:
            assert county_state(store, cdb) == ASM.COUNTY_STATE.COUNTY_AUDIT_COMPLETE
        # finished counties are not started again
        assert sar.start_round() == {}

    def test_discrepancy_needs_another_round(self, sar, store, county_dashboards, cvr_lookup, make_acvr):
        sar.start_round()
        adams = county_dashboards[0]
        mayor = store.get('Mayor', ComparisonAudit)
        # a Carol ballot the audit board reads as Dave
        flipped = cvr_lookup.get(next(i for i in mayor.contest_cvr_ids if i <= 7))
        acvr = make_acvr(flipped, {'Mayor': ['Dave']})
        assert sar.controller.submit_audit_cvr(adams, flipped, acvr)
        finish_round(sar, store, cvr_lookup, adams, make_acvr)
        assert adams.discrepancies.get(Audit.AUDIT_SELECTION.AUDITED_CONTEST) == 1
        assert mayor.two_vote_over_count == mayor.multiplicity(flipped.id)
        assert mayor.audit_status == Audit.AUDIT_STATUS.IN_PROGRESS
        drawn = len(mayor.contest_cvr_ids)

        sar.start_round()
        assert adams.current_round().number == 2
        assert len(mayor.contest_cvr_ids) > drawn
        assert board_state(store, adams) == ASM.AUDIT_BOARD_STATE.ROUND_IN_PROGRESS
        assert adams.current_round().start_audited_prefix_length == 0

    def test_deadline_missed(self, dos_dashboard, store, manifest, cvr_lookup, contests):
        store.save(CountyDashboard(1, 'Adams'))
        late = store.save(CountyDashboard(2, 'Boulder'))
        store.asm.step(ASM.KIND.COUNTY_DASHBOARD, '2', ASM.COUNTY_EVENT.IMPORT_BALLOT_MANIFEST_EVENT)
        for event in (ASM.COUNTY_EVENT.IMPORT_BALLOT_MANIFEST_EVENT, ASM.COUNTY_EVENT.IMPORT_CVRS_EVENT,
                      ASM.COUNTY_EVENT.CVR_IMPORT_SUCCESS_EVENT):
            store.asm.step(ASM.KIND.COUNTY_DASHBOARD, '1', event)
        sar = StartAuditRound(dos_dashboard, store, manifest, cvr_lookup, contests)
        states = sar.start_round()
        assert county_state(store, late) == ASM.COUNTY_STATE.DEADLINE_MISSED
        assert board_state(store, late) == ASM.AUDIT_BOARD_STATE.UNABLE_TO_AUDIT
        assert 2 not in states
        assert 1 in states

    def test_no_contests(self, dos_dashboard, store, manifest, cvr_lookup, contests, county_dashboards):
        dos_dashboard.remove_contests_to_audit_for_county(2)
        dos_dashboard.remove_contest_to_audit_by_name('Governor')
        sar = StartAuditRound(dos_dashboard, store, manifest, cvr_lookup, contests)
        states = sar.start_round()
        assert states[2] == ASM.AUDIT_BOARD_STATE.AUDIT_COMPLETE
        assert county_state(store, county_dashboards[1]) == ASM.COUNTY_STATE.COUNTY_AUDIT_COMPLETE
        assert states[1] == ASM.AUDIT_BOARD_STATE.ROUND_IN_PROGRESS_NO_AUDIT_BOARD

    def test_dos_not_ready(self, store, manifest, cvr_lookup, contests, county_dashboards):
        sar = StartAuditRound(DoSDashboard(), store, manifest, cvr_lookup, contests)
        with pytest.raises(IllegalTransitionError):
            sar.start_round()

##########################################################################################
if __name__ == "__main__":
    sys.exit(pytest.main(["-qq"], plugins=None))
