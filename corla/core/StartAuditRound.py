import logging

from .ASM import ASM, IllegalTransitionError
from .Audit import Audit
from .BallotSelection import BallotSelection
from .ComparisonAudit import ComparisonAudit
from .Contest import ContestCounter, CountyContestResult
from .Controller import ComparisonAuditController, PhantomBallots
from .Dashboard import CountyDashboard

logger = logging.getLogger(__name__)

##########################################################################################
class StartAuditRound:
    '''
    Start an audit round in every county that is ready.

    The first round counts the contests to audit, creates their comparison audits and
    assigns the audits to the counties. Every round then draws, for each targeted contest
    whose audit is not finished, the ballots between the audited prefix and the optimistic
    sample size, merges the draws into one ballot sequence per county, audits phantom
    records, and moves the county and audit board state machines.

    Parameters
    ----------
    dos_dashboard: DoSDashboard
        audit parameters and contests to audit
    store: Store
        comparison audits, CVR audit records, county dashboards and state machine states
    manifest: ManifestLookup
    cvr_lookup: CVRLookup
    contests: list of Contest
        every contest on every county's ballots
    '''

    def __init__(self, dos_dashboard, store, manifest, cvr_lookup, contests=None):
        self.dos_dashboard = dos_dashboard
        self.store = store
        self.manifest = manifest
        self.cvr_lookup = cvr_lookup
        self.contests = list(contests) if contests is not None else []
        self.controller = ComparisonAuditController(store, cvr_lookup)

    def contests_for_county(self, county_id) -> list:
        return [c for c in self.contests if c.county_id == county_id]

#################### first round setup
    def count_contests(self) -> list:
        '''
        Tally every contest selected for audit in every county that carries it, then roll
        the tallies up into contest results.

        Returns
        -------
        list of ContestResult
        '''
        reasons = self.dos_dashboard.audit_reasons()
        county_results = []
        for contest in self.contests:
            if contest.name not in reasons:
                continue
            ccr = CountyContestResult(contest.county_id, contest)
            for cvr in self.cvr_lookup.for_county(contest.county_id):
                ccr.add_cvr(cvr)
            ccr.update_results()
            county_results.append(ccr)
        results = ContestCounter.count_all_contests(county_results, reasons, self.manifest)
        logger.debug(f'count_contests: reasons={reasons}, results={[str(r) for r in results]}')
        return results

    def initialize_audits(self, contest_results: list, risk_limit) -> list:
        return [self.controller.create_audit(cr, risk_limit) for cr in contest_results]

    def initialize_county_dashboard(self, cdb: CountyDashboard, audits: list):
        '''
        Give the county its audits and start its audit. A county that has not imported both
        its ballot manifest and its CVRs misses the deadline and cannot be audited.
        '''
        driving = {ca.contest_name for ca in audits
                   if ca.audit_reason != Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS}
        cdb.set_audited_sample_count(0)
        cdb.audited_prefix_length = 0
        cdb.set_driving_contest_names(driving)
        if not cdb.audits:
            cdb.set_audits([ca for ca in audits if ca.is_for_county(cdb.county_id)])

        with self.store.asm.lock_for(cdb.identity):
            county_asm = self.store.asm.get(ASM.KIND.COUNTY_DASHBOARD, cdb.identity)
            board_asm = self.store.asm.get(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity)
            if county_asm.current_state != ASM.COUNTY_STATE.BALLOT_MANIFEST_AND_CVRS_OK:
                logger.info(f'{cdb.county_name} county missed the file upload deadline')
                board_asm.step_event(ASM.AUDIT_BOARD_EVENT.COUNTY_DEADLINE_MISSED_EVENT)
            county_asm.step_event(ASM.COUNTY_EVENT.COUNTY_START_AUDIT_EVENT)
            self.store.asm.save(county_asm)
            self.store.asm.save(board_asm)
        logger.debug(f'initialize_county_dashboard: county={cdb.county_id}, '
                     f'driving contests={sorted(driving)}, audits={len(cdb.audits)}')

    def initialize_audit_data(self) -> list:
        '''
        Count the contests, create their audits and set up every county dashboard.

        Returns
        -------
        list of ComparisonAudit
        '''
        results = self.count_contests()
        audits = self.initialize_audits(results, self.dos_dashboard.audit_info.risk_limit)
        for cdb in self.store.get_all(CountyDashboard):
            self.initialize_county_dashboard(cdb, audits)
        return audits

#################### every round
    def make_selections(self, audits: list, seed: str) -> list:
        '''
        Draw ballots for every targeted audit, from the end of its earlier draws to its
        optimistic sample size, and add the drawn CVR ids to the audit.

        Returns
        -------
        list of Selection
        '''
        selections = []
        for ca in audits:
            if not Audit.AUDIT_REASON.is_targeted(ca.contest_result.audit_reason):
                continue
            start_index = BallotSelection.audited_prefix_length(ca.contest_cvr_ids, self.store)
            if start_index < len(ca.contest_cvr_ids):
                logger.warning(f'make_selections: {ca.contest_name} has {len(ca.contest_cvr_ids) - start_index} '
                               f'drawn ballots not yet audited; drawing from index {len(ca.contest_cvr_ids)}')
                start_index = len(ca.contest_cvr_ids)
            end_index = ca.optimistic_samples_to_audit()
            selection = BallotSelection.random_selection(ca.contest_result, seed, start_index, end_index,
                                                         self.manifest, self.cvr_lookup)
            logger.info(f'make_selections: contest={ca.contest_name}, start_index={start_index}, '
                        f'end_index={end_index}, selection={selection}')
            ca.add_contest_cvr_ids(selection.contest_cvr_ids())
            selections.append(selection)
        return selections

    def is_ready_to_start_audit(self, cdb: CountyDashboard) -> bool:
        asm = self.store.asm.get(ASM.KIND.COUNTY_DASHBOARD, cdb.identity)
        return not (asm.is_in_initial_state() or asm.is_in_final_state())

    def dashboards_to_start(self) -> list:
        result = [cdb for cdb in self.store.get_all(CountyDashboard) if self.is_ready_to_start_audit(cdb)]
        logger.debug(f'dashboards_to_start: {[cdb.county_id for cdb in result]}')
        return result

    def start_round(self) -> dict:
        '''
        Start a round in every ready county.

        On the first round, once the audit definition is complete, the contests are counted
        and the audits created. A county whose round cannot start is logged and skipped.

        Returns
        -------
        dict: the audit board state of each county processed, keyed by county id

        Raises
        ------
        IllegalTransitionError if the Department of State cannot start a round
        '''
        dos_state = self.store.asm.current_state(ASM.KIND.DOS_DASHBOARD, self.dos_dashboard.identity)
        if dos_state == ASM.DOS_STATE.COMPLETE_AUDIT_INFO_SET:
            self.initialize_audit_data()
        self.store.asm.step(ASM.KIND.DOS_DASHBOARD, self.dos_dashboard.identity,
                            ASM.DOS_EVENT.DOS_START_ROUND_EVENT)

        audits = [ca for ca in self.store.get_all(ComparisonAudit) if ca.is_targeted() and not ca.is_finished()]
        selections = self.make_selections(audits, self.dos_dashboard.audit_info.seed)

        states = {}
        for cdb in self.dashboards_to_start():
            try:
                with self.store.asm.lock_for(cdb.identity):
                    states[cdb.county_id] = self._start_county_round(cdb, selections)
            except (ValueError, IllegalTransitionError) as e:
                logger.error(f'could not start round for {cdb.county_name} county: {e}')
        return states

    def _step_board(self, cdb: CountyDashboard, event: str) -> str:
        return self.store.asm.step(ASM.KIND.AUDIT_BOARD_DASHBOARD, cdb.identity, event)

    def _complete_county(self, cdb: CountyDashboard, board_event: str) -> str:
        state = self._step_board(cdb, board_event)
        self.store.asm.step(ASM.KIND.COUNTY_DASHBOARD, cdb.identity, ASM.COUNTY_EVENT.COUNTY_AUDIT_COMPLETE_EVENT)
        return state

    def _start_county_round(self, cdb: CountyDashboard, selections: list) -> str:
        county_state = self.store.asm.current_state(ASM.KIND.COUNTY_DASHBOARD, cdb.identity)
        underway = county_state == ASM.COUNTY_STATE.COUNTY_AUDIT_UNDERWAY
        audited_discrepancies = cdb.discrepancies.get(Audit.AUDIT_SELECTION.AUDITED_CONTEST)

        if underway and cdb.rounds and audited_discrepancies == 0 and not cdb.all_audits_complete():
            for ca in cdb.audits:
                if not ca.is_finished():
                    ca.update_audit_status()
                    self.store.save_or_update(ca)

        if underway and cdb.rounds and audited_discrepancies == 0 and cdb.all_audits_complete():
            logger.info(f'start_round: all audits complete, {cdb.county_name} county is finished')
            return self._complete_county(cdb, ASM.AUDIT_BOARD_EVENT.RISK_LIMIT_ACHIEVED_EVENT)

        if not cdb.audits:
            logger.info(f'start_round: {cdb.county_name} county made its deadline but has no contests to audit')
            return self._complete_county(cdb, ASM.AUDIT_BOARD_EVENT.NO_CONTESTS_TO_AUDIT_EVENT)

        segments = [s.for_county(cdb.county_id) for s in selections]
        combined = BallotSelection.combine_segments(s for s in segments if s is not None)
        cvrs = PhantomBallots.remove_phantom_records(
            PhantomBallots.audit_phantom_records(self.controller, cdb,
                                                 combined.cvrs_in_ballot_sequence(self.manifest),
                                                 self.contests_for_county(cdb.county_id)))
        ballot_sequence = [cvr.id for cvr in cvrs]
        logger.info(f'start_round: county={cdb.county_id}, audit_sequence={combined.audit_sequence()}, '
                    f'ballot_sequence={ballot_sequence}')

        if not ballot_sequence:
            logger.info(f'start_round: no ballots to audit in {cdb.county_name} county, skipping round')
            cdb.start_round(0, 0, 0, [], [])
            self.store.save_or_update(cdb)
            return self._step_board(cdb, ASM.AUDIT_BOARD_EVENT.ROUND_COMPLETE_EVENT)

        self.controller.start_round(cdb, cdb.audits, combined.audit_sequence(), ballot_sequence)
        self.store.save_or_update(cdb)
        logger.info(f'start_round: round {cdb.current_round().number} for {cdb.county_name} county started; '
                    f'estimated to audit {cdb.estimated_samples_to_audit()} ballots')
        return self._step_board(cdb, ASM.AUDIT_BOARD_EVENT.ROUND_START_EVENT)
