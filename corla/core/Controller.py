import logging
import warnings
from datetime import datetime, timezone

from .Audit import Audit
from .CVR import CVR, CVRContestInfo, CVRAuditInfo
from .ComparisonAudit import ComparisonAudit
from .Contest import ContestResult

logger = logging.getLogger(__name__)

##########################################################################################
class ComparisonAuditController:
    '''
    Comparison audit operations on county dashboards: creating audits, starting rounds,
    and submitting, re-auditing and "un-auditing" audit CVRs.

    The controller works through an object store (ComparisonAudit, CVRAuditInfo,
    CountyDashboard) and a CVR lookup (cast vote records and submitted audit CVRs). Both are
    passed in; nothing is shared between controllers.

    Methods:
    --------
    create_audit: make and save the ComparisonAudit for a contest
    start_round: open a round on a county dashboard
    submit_audit_cvr: record an audit board's interpretation of a ballot under audit
    reaudit: replace a submitted interpretation
    audit, unaudit: add a CVR/ACVR pair to, or remove it from, every audit of a county
    update_cvr_under_audit: advance the audited prefix past ballots already audited
    '''

    def __init__(self, store, cvr_lookup):
        self.store = store
        self.cvr_lookup = cvr_lookup

#################### audits
    def create_audit(self, contest_result: ContestResult, risk_limit,
                     audit_type: str=Audit.AUDIT_TYPE.COMPARISON) -> ComparisonAudit:
        '''
        Create the comparison audit of a contest and save it.

        Parameters
        ----------
        contest_result: ContestResult
            the counted contest
        risk_limit: Decimal or float
            risk limit of the audit
        audit_type: str
            only COMPARISON audits are supported

        Returns
        -------
        ComparisonAudit
        '''
        if audit_type != Audit.AUDIT_TYPE.COMPARISON:
            raise NotImplementedError(f'audit type {audit_type} not implemented')
        ca = ComparisonAudit(contest_result, risk_limit, contest_result.diluted_margin,
                             Audit.GAMMA, contest_result.audit_reason)
        self.store.save(ca)
        logger.debug(f'create_audit: contest_result={contest_result}, audit={ca}')
        return ca

    def estimated_samples_to_audit(self, cdb) -> int:
        '''
        largest estimated sample size among the county's driving contests
        '''
        to_audit = 0
        for ca in cdb.audits:
            if ca.contest_name in cdb.driving_contest_names:
                to_audit = max(to_audit, ca.estimated_samples_to_audit())
        return to_audit

#################### rounds
    def start_round(self, cdb, audits, audit_sequence: list, ballot_sequence: list) -> bool:
        '''
        Open a round on `cdb` and bring its counters up to date with ballots that were
        already audited.

        Parameters
        ----------
        cdb: CountyDashboard
        audits: list of ComparisonAudit
            the audits of contests on the county's ballots
        audit_sequence: list
            CVR ids in draw order, with repeats
        ballot_sequence: list
            distinct CVR ids in retrieval order

        Returns
        -------
        bool: are there ballots to examine in the round?
        '''
        logger.info(f'starting a round for county {cdb.county_id}, '
                    f'driving contests={sorted(cdb.driving_contest_names)}')
        cdb.set_audits(audits)
        cdb.start_round(len(ballot_sequence), len(audit_sequence), 0, ballot_sequence, audit_sequence)
        self.update_round(cdb, cdb.current_round())
        self.update_cvr_under_audit(cdb)
        return cdb.ballots_remaining_in_current_round() > 0

    def update_round(self, cdb, the_round):
        '''
        Count, in the round, the discrepancies and disagreements already recorded for
        ballots in its audit subsequence, creating CVRAuditInfo records where needed and
        setting the multiplicity of each ballot in each contest.
        '''
        for cvr_id in dict.fromkeys(the_round.audit_subsequence):
            info = self.store.get(cvr_id, CVRAuditInfo)
            if info is None:
                info = CVRAuditInfo(self.cvr_lookup.get(cvr_id))
            discrepancies = set()
            disagreements = set()
            multiplicity = 0
            for ca in cdb.audits:
                m = ca.multiplicity(cvr_id)
                info.set_multiplicity_by_contest(ca.id, m)
                multiplicity = max(multiplicity, m)
                if info.acvr is None:
                    continue
                reason = self._reason(ca, cvr_id)
                if ca.compute_discrepancy(info.cvr, info.acvr) is not None:
                    discrepancies.add(reason)
                ci = info.acvr.contest_info_for(ca.contest_name)
                if ci is not None and ci.consensus == CVRContestInfo.CONSENSUS.NO:
                    disagreements.add(reason)
            for _ in range(multiplicity):
                if discrepancies:
                    the_round.add_discrepancy(discrepancies)
                if disagreements:
                    the_round.add_disagreement(disagreements)
            self.store.save_or_update(info)

    def update_cvr_under_audit(self, cdb):
        '''
        Move the county's audited prefix past every ballot of the current round that
        already has an audit CVR, counting those ballots in the audits, and update the
        audit statuses.
        '''
        the_round = cdb.current_round()
        if the_round is None:
            return
        checked = set()
        index = the_round.actual_audited_prefix_length - the_round.start_audited_prefix_length
        while index < len(the_round.audit_subsequence):
            cvr_id = the_round.audit_subsequence[index]
            if cvr_id not in checked:
                checked.add(cvr_id)
                info = self.store.get(cvr_id, CVRAuditInfo)
                if info is None or info.acvr is None:
                    break
                count = self.audit(cdb, info, False)
                cdb.set_audited_sample_count(cdb.audited_sample_count + count)
            index += 1
        cdb.set_audited_prefix_length(index + the_round.start_audited_prefix_length)
        cdb.update_audit_status()

    def cvrs_to_audit_in_round(self, cdb, round_number: int) -> list:
        '''
        CVRAuditInfo of the distinct ballots of a round (numbered from 1), in draw order
        '''
        if round_number < 1 or len(cdb.rounds) < round_number:
            raise ValueError(f'invalid round {round_number} specified')
        the_round = cdb.rounds[round_number - 1]
        return [self.store.get(cvr_id, CVRAuditInfo) for cvr_id in dict.fromkeys(the_round.audit_subsequence)]

    def cvr_ids_remaining_in_current_round(self, cdb) -> list:
        the_round = cdb.current_round()
        if the_round is None:
            return []
        start = the_round.actual_audited_prefix_length
        end = min(the_round.expected_audited_prefix_length, len(the_round.audit_subsequence))
        return the_round.audit_subsequence[start:end]

    def ballots_to_audit(self, cdb, round_number: int) -> list:
        '''
        The ballots to retrieve in a round (numbered from 1).

        Returns
        -------
        list of dict with keys 'cvr', 'audited' (an audit CVR has been submitted) and
        'previously_audited' (the ballot was in the sequence of an earlier round); empty if
        the round does not exist
        '''
        if round_number < 1 or len(cdb.rounds) < round_number:
            return []
        the_round = cdb.rounds[round_number - 1]
        logger.debug(f'ballots to audit: round={the_round}, ballot_sequence={the_round.ballot_sequence}')
        previous = {cvr_id for r in cdb.rounds[:round_number - 1] for cvr_id in r.ballot_sequence}
        return [{'cvr': cvr, 'audited': self.audited(cdb, cvr), 'previously_audited': cvr.id in previous}
                for cvr in self.cvr_lookup.by_ids(the_round.ballot_sequence)]

    def audited(self, cdb, cvr: CVR) -> bool:
        info = self.store.get(cvr.id, CVRAuditInfo)
        return info is not None and info.acvr is not None

#################### submissions
    @staticmethod
    def check_acvr_sanity(cvr: CVR, acvr: CVR) -> bool:
        '''
        is `acvr` an audit CVR for the same ballot as `cvr`?
        '''
        return cvr.is_audit_pair_with(acvr) and (acvr.is_auditor_generated or acvr.is_system_generated)

    def submit_audit_cvr(self, cdb, cvr_under_audit: CVR, acvr: CVR) -> bool:
        '''
        Submit the audit board's interpretation of a ballot under audit.

        A ballot audited before is first "un-audited". Every draw of the ballot is counted.

        Returns
        -------
        bool: False, with nothing changed, if the ballot is not under audit or `acvr` does
        not describe the same ballot
        '''
        info = self.store.get(cvr_under_audit.id, CVRAuditInfo)
        if info is None:
            logger.warning(f'attempt to submit ACVR for county {cdb.county_id}, '
                           f'cvr {cvr_under_audit.id} not under audit')
            return False
        if not self.check_acvr_sanity(cvr_under_audit, acvr):
            warnings.warn(f'attempt to submit non-corresponding ACVR {acvr.uri()} for county '
                          f'{cdb.county_id}, cvr {cvr_under_audit.uri()}')
            return False
        self.cvr_lookup.save_acvr(acvr)
        if info.acvr is None:
            info.set_acvr(acvr)
            new_count = self.audit(cdb, info, True)
            cdb.add_audited_ballot()
            cdb.set_audited_sample_count(cdb.audited_sample_count + new_count)
        else:
            former_count = self.unaudit(cdb, info)
            info.set_acvr(acvr)
            new_count = self.audit(cdb, info, True)
            cdb.set_audited_sample_count(cdb.audited_sample_count - former_count + new_count)
        self.update_cvr_under_audit(cdb)
        cdb.update_audit_status()
        return True

    def reaudit(self, cdb, cvr: CVR, new_acvr: CVR, comment: str=None) -> bool:
        '''
        Replace the audit CVR of a ballot that was already audited.

        The old audit CVR is marked REAUDITED; the new one gets the next revision number
        and the comment.

        Returns
        -------
        bool: False, with nothing changed, if the ballot was never audited or `new_acvr`
        does not describe the same ballot
        '''
        logger.info(f'reaudit: cvr {cvr}')
        info = self.store.get(cvr.id, CVRAuditInfo)
        if info is None or info.acvr is None:
            logger.error(f"can't reaudit cvr {cvr.id}, which hasn't been audited")
            return False
        if not self.check_acvr_sanity(cvr, new_acvr):
            warnings.warn(f'attempt to reaudit cvr {cvr.uri()} with non-corresponding ACVR {new_acvr.uri()}')
            return False
        old_acvr = info.acvr
        former_count = self.unaudit(cdb, info)
        revision = self.cvr_lookup.max_revision(cvr)
        if revision == 0:
            revision = 1
            old_acvr.revision = revision
        old_acvr.set_to_reaudited()
        new_acvr.comment = comment
        new_acvr.revision = revision + 1
        self.cvr_lookup.save_acvr(new_acvr)
        info.set_acvr(new_acvr)
        self.store.save_or_update(info)
        new_count = self.audit(cdb, info, True)
        logger.debug(f'reaudit: former_count={former_count}, new_count={new_count}')
        cdb.set_audited_sample_count(cdb.audited_sample_count - former_count + new_count)
        cdb.update_audit_status()
        return True

    @staticmethod
    def _reason(ca: ComparisonAudit, cvr_id) -> str:
        # ballots not drawn for a targeted contest count as opportunistic
        if ca.is_covering(cvr_id) and Audit.AUDIT_REASON.is_targeted(ca.audit_reason):
            return ca.audit_reason
        return Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS

    @staticmethod
    def _disagreeing_contests(acvr: CVR) -> set:
        return {ci.contest for ci in acvr.contest_info if ci.consensus == CVRContestInfo.CONSENSUS.NO}

    def audit(self, cdb, info: CVRAuditInfo, update_counters: bool) -> int:
        '''
        Add a CVR/ACVR pair to every audit of the county. Draws of the ballot already
        counted in an audit are not counted again.

        Parameters
        ----------
        cdb: CountyDashboard
        info: CVRAuditInfo
            with its acvr set
        update_counters: bool
            also count the discrepancies and disagreements on the dashboard

        Returns
        -------
        int: number of draws newly counted, summed over the audits
        '''
        cvr, acvr = info.cvr, info.acvr
        disagreeing = self._disagreeing_contests(acvr)
        discrepancies = set()
        disagreements = set()
        total = 0
        for ca in cdb.audits:
            multiplicity = ca.multiplicity(info.id)
            count = multiplicity - info.get_count_by_contest(ca.id)
            total += count
            info.set_multiplicity_by_contest(ca.id, multiplicity)
            info.set_count_by_contest(ca.id, multiplicity)
            reason = self._reason(ca, info.id)
            discrepancy = ca.compute_discrepancy(cvr, acvr)
            if discrepancy is not None:
                for _ in range(count):
                    ca.record_discrepancy(info, discrepancy)
                discrepancies.add(reason)
            if ca.contest_name in disagreeing:
                for _ in range(count):
                    ca.record_disagreement(info)
                disagreements.add(reason)
            ca.signal_sample_audited(count, info.id)
            self.store.save_or_update(ca)
        info.set_discrepancy(discrepancies)
        info.set_disagreement(disagreements)
        self.store.save_or_update(info)
        if update_counters:
            cdb.add_discrepancy(discrepancies)
            cdb.add_disagreement(disagreements)
            logger.debug(f'audit: county {cdb.county_id} discrepancies={sorted(discrepancies)}, '
                         f'disagreements={sorted(disagreements)}')
        return total

    def unaudit(self, cdb, info: CVRAuditInfo) -> int:
        '''
        Remove a CVR/ACVR pair from every audit of the county and from the dashboard
        counters. The CVRAuditInfo keeps its audit CVR; its counts and reasons are cleared.

        Returns
        -------
        int: number of draws removed, summed over the audits
        '''
        cvr, acvr = info.cvr, info.acvr
        disagreeing = self._disagreeing_contests(acvr)
        discrepancies = set()
        disagreements = set()
        total = 0
        for ca in cdb.audits:
            count = info.get_count_by_contest(ca.id)
            total += count
            reason = self._reason(ca, info.id)
            discrepancy = ca.compute_discrepancy(cvr, acvr)
            if discrepancy is not None:
                for _ in range(count):
                    ca.remove_discrepancy(info, discrepancy)
                discrepancies.add(reason)
            if ca.contest_name in disagreeing:
                for _ in range(count):
                    ca.remove_disagreement(info)
                disagreements.add(reason)
            ca.signal_sample_unaudited(count, info.id)
            self.store.save_or_update(ca)
        info.set_discrepancy(set())
        info.set_disagreement(set())
        info.reset_counted()
        self.store.save_or_update(info)
        cdb.remove_discrepancy(discrepancies)
        cdb.remove_disagreement(disagreements)
        return total


##########################################################################################
class PhantomBallots:
    '''
    Drawn ballots with no cast vote record are "audited" by the system: each gets an audit
    CVR with no choices in every contest of its county, which counts as the worst possible
    discrepancy.
    '''

    PHANTOM_COMMENT = 'PHANTOM_RECORD - CVR not found'

    @staticmethod
    def is_phantom_record(cvr: CVR) -> bool:
        return cvr.record_type == CVR.RECORD_TYPE.PHANTOM_RECORD

    @classmethod
    def remove_phantom_records(cls, cvrs) -> list:
        return [cvr for cvr in cvrs if not cls.is_phantom_record(cvr)]

    @classmethod
    def audit_phantom_records(cls, controller: ComparisonAuditController, cdb, cvrs, contests) -> list:
        '''
        Submit an audit CVR for every phantom record in `cvrs` not yet audited.

        Parameters
        ----------
        controller: ComparisonAuditController
        cdb: CountyDashboard
        cvrs: list of CVR
        contests: list of Contest
            the contests on the county's ballots

        Returns
        -------
        cvrs, unchanged
        '''
        for cvr in cvrs:
            if cls.is_phantom_record(cvr):
                cls._audit_phantom_record(controller, cdb, cvr, contests)
        return list(cvrs)

    @classmethod
    def _audit_phantom_record(cls, controller: ComparisonAuditController, cdb, cvr: CVR, contests):
        info = controller.store.get(cvr.id, CVRAuditInfo)
        if info is not None and info.acvr is not None:
            return
        if info is None:
            info = controller.store.save(CVRAuditInfo(cvr))
        acvr = CVR(id=f'{cvr.id}?acvr',
                   record_type=CVR.RECORD_TYPE.PHANTOM_RECORD_ACVR,
                   timestamp=datetime.now(timezone.utc),
                   county_id=cvr.county_id,
                   cvr_number=cvr.cvr_number,
                   sequence_number=0,
                   scanner_id=cvr.scanner_id,
                   batch_id=cvr.batch_id,
                   record_id=cvr.record_id,
                   imprinted_id=cvr.imprinted_id,
                   ballot_type=cvr.ballot_type,
                   contest_info=[CVRContestInfo(c.name, cls.PHANTOM_COMMENT, None, [])
                                 for c in contests if c.county_id == cvr.county_id])
        controller.submit_audit_cvr(cdb, cvr, acvr)
