import sys
import pytest
from decimal import Decimal

from corla.core.ASM import ASM, IllegalTransitionError
from corla.core.Audit import Audit, SelectionCounter
from corla.core.ComparisonAudit import ComparisonAudit
from corla.core.Dashboard import (AuditInfo, AuditInvestigationReportInfo, ContestToAudit, CountyDashboard,
                                  DoSDashboard)
from corla.core.Persistence import ASMStore

#######################################################################################################

class TestCountyDashboard:

    def test_rounds(self):
        cdb = CountyDashboard(1, 'Adams')
        assert cdb.current_round() is None
        cdb.end_round()
        assert cdb.rounds == []
        cdb.start_round(3, 4, 0, [1, 2, 3], [1, 2, 1, 3])
        assert cdb.current_round().number == 1
        assert cdb.ballots_remaining_in_current_round() == 3
        with pytest.raises(ValueError):
            cdb.start_round(1, 1, 0, [4], [4])
        cdb.add_audited_ballot()
        cdb.set_audited_prefix_length(3)
        assert cdb.ballots_audited == 1
        assert cdb.ballots_remaining_in_current_round() == 2
        assert cdb.current_round().actual_audited_prefix_length == 3
        cdb.end_round()
        assert cdb.current_round() is None
        assert cdb.rounds[0].end_time is not None
        end_time = cdb.rounds[0].end_time
        cdb.end_round()
        assert cdb.rounds[0].end_time == end_time
        cdb.start_round(1, 1, 0, [4], [4])
        assert cdb.current_round().number == 2
        assert cdb.current_round().previous_ballots_audited == 1

    def test_audited_ballot_outside_round(self):
        cdb = CountyDashboard(1, 'Adams')
        cdb.add_audited_ballot()
        cdb.set_audited_prefix_length(2)
        assert cdb.ballots_audited == 0
        assert cdb.audited_prefix_length is None

    def test_discrepancies(self):
        cdb = CountyDashboard(1, 'Adams')
        cdb.start_round(1, 1, 0, [1], [1])
        cdb.add_discrepancy({Audit.AUDIT_REASON.STATE_WIDE_CONTEST, Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS})
        cdb.add_disagreement({Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST})
        assert cdb.discrepancies == SelectionCounter(1, 1)
        assert cdb.current_round().discrepancies == SelectionCounter(1, 1)
        assert cdb.disagreements.get(Audit.AUDIT_SELECTION.AUDITED_CONTEST) == 1
        cdb.remove_discrepancy({Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS})
        assert cdb.discrepancies == SelectionCounter(1, 0)
        assert cdb.current_round().discrepancies == SelectionCounter(1, 0)

    def test_audit_boards(self):
        cdb = CountyDashboard(1, 'Adams')
        cdb.audit_board_count = 2
        with pytest.raises(AssertionError):
            cdb.sign_in_audit_board(0, ['only one'])
        cdb.sign_in_audit_board(0, ['Ann', 'Ben'])
        assert not cdb.are_audit_boards_signed_in()
        cdb.sign_in_audit_board(1, ['Cal', 'Dee'])
        assert cdb.are_audit_boards_signed_in()
        cdb.sign_out_all_audit_boards()
        assert cdb.are_audit_boards_signed_out()

    def test_audits(self, governor_result):
        cdb = CountyDashboard(2, 'Boulder')
        governor = ComparisonAudit(governor_result, 0.05)
        opportunistic = ComparisonAudit(governor_result, 0.05,
                                        audit_reason=Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS, id='other')
        cdb.set_audits([governor, opportunistic])
        assert cdb.estimated_samples_to_audit() == 13
        assert cdb.optimistic_samples_to_audit() == 13
        assert not cdb.all_audits_complete()
        governor.signal_sample_audited(13)
        cdb.update_audit_status()
        assert cdb.all_audits_complete()
        assert cdb.estimated_samples_to_audit() == 0
        assert cdb.end_single_county_audits() == []
        cdb.end_audits()
        assert opportunistic.audit_status == Audit.AUDIT_STATUS.ENDED
        assert governor.audit_status == Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED

    def test_reports(self):
        cdb = CountyDashboard(1, 'Adams')
        cdb.submit_investigation_report(AuditInvestigationReportInfo(name='Ann', report='ballot torn'))
        assert cdb.investigation_reports[0].report == 'ballot torn'


class TestAuditInfo:

    def test_from_dict(self, audit_info, seed):
        assert audit_info.risk_limit == Decimal('0.05')
        assert audit_info.seed == seed
        assert audit_info.is_complete()

    def test_bad_seed(self):
        with pytest.raises(ValueError):
            AuditInfo.from_dict({'seed': '123'})
        with pytest.raises(ValueError):
            AuditInfo.from_dict({'seed': 'abcdefghijklmnopqrstuvwxyz'})

    def test_bad_risk_limit(self):
        with pytest.raises(AssertionError):
            AuditInfo.from_dict({'risk_limit': 0.6})
        with pytest.raises(AssertionError):
            AuditInfo.from_dict({'risk_limit': 0})

    def test_combine(self, audit_info):
        partial = AuditInfo.from_dict({'risk_limit': 0.1})
        combined = audit_info.combine(partial)
        assert combined.risk_limit == Decimal('0.1')
        assert combined.seed == audit_info.seed
        assert not partial.is_complete()


class TestDoSDashboard:

    def test_update_audit_info(self, seed):
        asm = ASMStore()
        dos = DoSDashboard()
        dos.update_audit_info(AuditInfo.from_dict({'election_type': 'general', 'risk_limit': 0.05}), asm)
        assert asm.current_state(ASM.KIND.DOS_DASHBOARD) == ASM.DOS_STATE.PARTIAL_AUDIT_INFO_SET
        dos.update_audit_info(AuditInfo.from_dict({'election_date': '2026-11-03',
                                                   'public_meeting_date': '2026-11-10',
                                                   'seed': seed}), asm)
        assert dos.audit_info.risk_limit == Decimal('0.05')
        assert asm.current_state(ASM.KIND.DOS_DASHBOARD) == ASM.DOS_STATE.COMPLETE_AUDIT_INFO_SET

    def test_update_audit_info_after_start(self, dos_dashboard, store, seed):
        store.asm.step(ASM.KIND.DOS_DASHBOARD, ASM.DOS_IDENTITY, ASM.DOS_EVENT.DOS_START_ROUND_EVENT)
        with pytest.raises(IllegalTransitionError):
            dos_dashboard.update_audit_info(AuditInfo(seed='9' * 20, risk_limit=Decimal('0.1')), store.asm)
        assert dos_dashboard.audit_info.seed == seed
        assert dos_dashboard.audit_info.risk_limit == Decimal('0.05')
        assert store.asm.current_state(ASM.KIND.DOS_DASHBOARD) == ASM.DOS_STATE.DOS_AUDIT_ONGOING

    def test_contests_to_audit(self, dos_dashboard, contests):
        assert dos_dashboard.targeted_contest_names() == {'Governor', 'Mayor'}
        assert dos_dashboard.audit_reasons() == {'Governor': Audit.AUDIT_REASON.STATE_WIDE_CONTEST,
                                                 'Mayor': Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST}
        assert dos_dashboard.update_contest_to_audit(ContestToAudit(contests[1], None, Audit.AUDIT_TYPE.NONE))
        assert dos_dashboard.targeted_contest_names() == {'Governor'}
        assert dos_dashboard.remove_contests_to_audit_for_county(2)
        assert dos_dashboard.targeted_contests() == [contests[0]]

    def test_not_auditable_is_final(self, dos_dashboard, contests):
        mayor = contests[1]
        dos_dashboard.update_contest_to_audit(ContestToAudit(mayor, Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST,
                                                             Audit.AUDIT_TYPE.NOT_AUDITABLE))
        assert 'Mayor' not in dos_dashboard.audit_reasons()
        assert not dos_dashboard.update_contest_to_audit(
            ContestToAudit(mayor, Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST, Audit.AUDIT_TYPE.COMPARISON))
        dos_dashboard.remove_unauditable_contests_to_audit()
        assert dos_dashboard.targeted_contest_names() == {'Governor'}

    def test_is_valid_seed(self, seed):
        assert DoSDashboard.is_valid_seed(seed)
        assert not DoSDashboard.is_valid_seed(seed[:-1])
        assert not DoSDashboard.is_valid_seed(None)

##########################################################################################
if __name__ == "__main__":
    sys.exit(pytest.main(["-qq"], plugins=None))
