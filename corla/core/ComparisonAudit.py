import logging
from collections import Counter
from decimal import Decimal, localcontext, ROUND_CEILING

from .Audit import Audit
from .CVR import CVR, CVRContestInfo, CVRAuditInfo
from .Contest import ContestResult

logger = logging.getLogger(__name__)

##########################################################################################
class ComparisonAudit:
    '''
    Ballot-level comparison audit of one contest.

    Tracks the discrepancies found between cast vote records and the audit boards'
    interpretations, the number of ballots audited for the contest, and the CVR ids drawn
    for the contest (with repeats, so that a ballot drawn twice counts twice). From these it
    derives the current risk measurement and the number of ballots still to audit.

    Status moves NOT_STARTED -> IN_PROGRESS <-> RISK_LIMIT_ACHIEVED; ENDED, NOT_AUDITABLE
    and HAND_COUNT are absorbing.

    Sample sizes are memoized: any discrepancy invalidates the optimistic size, any change
    to the audited count invalidates the estimated size.
    '''

    DISCREPANCY_TYPES = (-2, -1, 0, 1, 2)

    def __init__(
                 self,
                 contest_result: ContestResult=None,
                 risk_limit=None,
                 diluted_margin=None,
                 gamma=Audit.GAMMA,
                 audit_reason: str=None,
                 id: object=None):
        self.contest_result = contest_result
        self.id = id if id is not None else contest_result.contest_name
        self.risk_limit = Audit.as_decimal(risk_limit)
        self.diluted_margin = Audit.as_decimal(diluted_margin if diluted_margin is not None
                                               else contest_result.diluted_margin)
        self.gamma = Audit.as_decimal(gamma)
        self.audit_reason = audit_reason if audit_reason is not None else contest_result.audit_reason
        self.audit_status = Audit.AUDIT_STATUS.NOT_STARTED
        self.audited_sample_count = 0
        self.two_vote_under_count = 0
        self.one_vote_under_count = 0
        self.other_count = 0
        self.one_vote_over_count = 0
        self.two_vote_over_count = 0
        self.disagreement_count = 0
        self._optimistic_samples_to_audit = 0
        self._estimated_samples_to_audit = 0
        self._optimistic_recalculate_needed = True
        self._estimated_recalculate_needed = True
        self.contest_cvr_ids = []
        self.discrepancies = {}
        self.disagreements = set()
        self.optimistic_samples_to_audit()
        self.estimated_samples_to_audit()
        if self.diluted_margin == 0:
            self.audit_status = Audit.AUDIT_STATUS.NOT_AUDITABLE

    def __str__(self):
        return (f'[ComparisonAudit for {self.contest_name}: counties={sorted(self.contest_result.counties)}, '
                f'audited_sample_count={self.audited_sample_count}, status={self.audit_status}, '
                f'reason={self.audit_reason}]')

    @property
    def contest_name(self) -> str:
        return self.contest_result.contest_name

    def to_dict(self) -> dict:
        '''
        persisted form: identity, parameters and running counters
        '''
        return {'id': self.id,
                'contest_name': self.contest_name,
                'risk_limit': self.risk_limit,
                'diluted_margin': self.diluted_margin,
                'gamma': self.gamma,
                'audit_reason': self.audit_reason,
                'audit_status': self.audit_status,
                'audited_sample_count': self.audited_sample_count,
                'two_vote_under_count': self.two_vote_under_count,
                'one_vote_under_count': self.one_vote_under_count,
                'other_count': self.other_count,
                'one_vote_over_count': self.one_vote_over_count,
                'two_vote_over_count': self.two_vote_over_count,
                'disagreement_count': self.disagreement_count,
                'contest_cvr_ids': list(self.contest_cvr_ids)}

#################### status
    def is_for_county(self, county_id) -> bool:
        return county_id in self.contest_result.county_ids()

    def is_single_county_for(self, county_id) -> bool:
        return len(self.contest_result.county_ids()) == 1 and self.is_for_county(county_id)

    def is_hand_count(self) -> bool:
        return self.audit_status == Audit.AUDIT_STATUS.HAND_COUNT

    def is_targeted(self) -> bool:
        return Audit.AUDIT_REASON.is_targeted(self.audit_reason) and not self.is_hand_count()

    def is_finished(self) -> bool:
        return self.audit_status in Audit.AUDIT_STATUS.FINISHED

    def update_audit_status(self):
        '''
        Recompute stale sample sizes and set the status from the optimistic number of
        ballots still to audit. No-op once the audit has ended, is being hand counted, or is
        not auditable.
        '''
        logger.debug(f'update_audit_status: {self.audit_status} for contest={self.contest_name} '
                     f'optimistic={self._optimistic_samples_to_audit} audited={self.audited_sample_count}')
        if self.audit_status in Audit.AUDIT_STATUS.TERMINAL:
            return
        if self._optimistic_recalculate_needed or self._estimated_recalculate_needed:
            self._recalculate_samples_to_audit()
        if self._optimistic_samples_to_audit - self.audited_sample_count <= 0:
            logger.debug(f'update_audit_status: RISK_LIMIT_ACHIEVED for contest={self.contest_name}')
            self.audit_status = Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED
        else:
            if self.audit_status == Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED:
                logger.warning(f'update_audit_status: contest {self.contest_name} moving from '
                               f'RISK_LIMIT_ACHIEVED to IN_PROGRESS')
            self.audit_status = Audit.AUDIT_STATUS.IN_PROGRESS

    def end_audit(self):
        if self.audit_status not in (Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED, Audit.AUDIT_STATUS.NOT_AUDITABLE):
            self.audit_status = Audit.AUDIT_STATUS.ENDED

    def set_hand_count(self):
        self.audit_status = Audit.AUDIT_STATUS.HAND_COUNT

#################### sample sizes
    def _compute_optimistic(self, two_under: int, one_under: int, one_over: int, two_over: int) -> int:
        return Audit.optimistic(self.risk_limit, self.diluted_margin, self.gamma,
                                two_under, one_under, one_over, two_over)

    def initial_samples_to_audit(self) -> int:
        return self._compute_optimistic(0, 0, 0, 0)

    def overstatements(self) -> int:
        return self.one_vote_over_count + self.two_vote_over_count

    def scaling_factor(self) -> Decimal:
        '''
        1 + (overstatements / audited ballots); 1 before any ballot is audited
        '''
        if self.audited_sample_count == 0:
            return Decimal(1)
        with localcontext() as ctx:
            ctx.prec = Audit.DECIMAL_PRECISION
            return 1 + Decimal(self.overstatements()) / Decimal(self.audited_sample_count)

    def _recalculate_samples_to_audit(self):
        if self._optimistic_recalculate_needed:
            self._optimistic_samples_to_audit = self._compute_optimistic(
                self.two_vote_under_count, self.one_vote_under_count,
                self.one_vote_over_count, self.two_vote_over_count)
            self._optimistic_recalculate_needed = False
        if self.overstatements() == 0:
            self._estimated_samples_to_audit = self._optimistic_samples_to_audit
        else:
            with localcontext() as ctx:
                ctx.prec = Audit.DECIMAL_PRECISION
                scaled = Decimal(self._optimistic_samples_to_audit) * self.scaling_factor()
                self._estimated_samples_to_audit = int(scaled.to_integral_value(rounding=ROUND_CEILING))
        logger.debug(f'recalculated samples to audit for {self.contest_name}: '
                     f'twoUnder={self.two_vote_under_count}, oneUnder={self.one_vote_under_count}, '
                     f'oneOver={self.one_vote_over_count}, twoOver={self.two_vote_over_count}, '
                     f'optimistic={self._optimistic_samples_to_audit}, '
                     f'estimated={self._estimated_samples_to_audit}')
        self._estimated_recalculate_needed = False

    def optimistic_samples_to_audit(self) -> int:
        if self._optimistic_recalculate_needed:
            self._recalculate_samples_to_audit()
        return self._optimistic_samples_to_audit

    def estimated_samples_to_audit(self) -> int:
        if self._estimated_recalculate_needed:
            self._recalculate_samples_to_audit()
        return self._estimated_samples_to_audit

    def optimistic_remaining(self) -> int:
        return max(0, self.optimistic_samples_to_audit() - self.audited_sample_count)

    def estimated_remaining(self) -> int:
        return max(0, self.estimated_samples_to_audit() - self.audited_sample_count)

    def risk_measurement(self) -> Decimal:
        '''
        current P-value of the audit, rounded half-up to 3 places; 1 before any ballot has
        been audited or when the margin is 0
        '''
        if self.audited_sample_count > 0 and self.diluted_margin > 0:
            p = Audit.p_value_approximation(self.audited_sample_count, self.diluted_margin, self.gamma,
                                            self.one_vote_under_count, self.two_vote_under_count,
                                            self.one_vote_over_count, self.two_vote_over_count)
            return Audit.round_risk(p)
        return Decimal(1)

#################### sample bookkeeping
    def add_contest_cvr_ids(self, cvr_ids: list):
        self.contest_cvr_ids.extend(cvr_ids)

    def is_covering(self, cvr_id) -> bool:
        return cvr_id in self.contest_cvr_ids

    def multiplicity(self, cvr_id) -> int:
        return self.contest_cvr_ids.count(cvr_id)

    def multiplicities(self) -> Counter:
        return Counter(self.contest_cvr_ids)

    def _adjust_audited(self, delta: int):
        if delta == 0:
            return
        self._estimated_recalculate_needed = True
        self.audited_sample_count += delta
        if self.audit_status == Audit.AUDIT_STATUS.RISK_LIMIT_ACHIEVED:
            logger.warning(f'resetting status of {self.contest_name} from RISK_LIMIT_ACHIEVED to IN_PROGRESS')
            self.audit_status = Audit.AUDIT_STATUS.IN_PROGRESS

    def signal_sample_audited(self, count: int, cvr_id=None):
        '''
        Count `count` more audited ballots, if the contest is targeted and `cvr_id` was drawn
        for it. With `cvr_id` None the count is applied unconditionally.
        '''
        if cvr_id is None:
            self._adjust_audited(count)
        elif self.is_targeted():
            if self.is_covering(cvr_id):
                self._adjust_audited(count)
            else:
                logger.debug(f'signal_sample_audited: {self.contest_name} is targeted, '
                             f'but cvr {cvr_id} was not selected for it')

    def signal_sample_unaudited(self, count: int, cvr_id=None):
        if cvr_id is None:
            self._adjust_audited(-count)
        elif self.is_targeted() and self.is_covering(cvr_id):
            self._adjust_audited(-count)

#################### discrepancies
    @classmethod
    def _check_type(cls, the_type: int):
        if the_type not in cls.DISCREPANCY_TYPES:
            raise ValueError(f'invalid discrepancy type: {the_type}')

    def _bump(self, the_type: int, delta: int):
        if the_type == -2:
            self.two_vote_under_count += delta
        elif the_type == -1:
            self.one_vote_under_count += delta
        elif the_type == 0:
            self.other_count += delta
        elif the_type == 1:
            self.one_vote_over_count += delta
        else:
            self.two_vote_over_count += delta
        if the_type != 0:
            self._optimistic_recalculate_needed = True

    def record_discrepancy(self, record: CVRAuditInfo, the_type: int) -> int:
        '''
        Record a discrepancy of type `the_type` found on `record`. Only discrepancies on
        ballots drawn for this contest are counted.

        Returns
        -------
        the_type
        '''
        self._check_type(the_type)
        if self.is_covering(record.id):
            self._bump(the_type, 1)
        logger.info(f'record_discrepancy: type={the_type}, record={record.id}, contest={self.contest_name}')
        self.discrepancies[record.id] = the_type
        return the_type

    def remove_discrepancy(self, record: CVRAuditInfo, the_type: int):
        self._check_type(the_type)
        if self.is_covering(record.id):
            self._bump(the_type, -1)
        self.discrepancies.pop(record.id, None)

    def get_discrepancy(self, record: CVRAuditInfo):
        return self.discrepancies.get(record.id)

    def discrepancy_count(self, the_type: int) -> int:
        self._check_type(the_type)
        return {-2: self.two_vote_under_count,
                -1: self.one_vote_under_count,
                0: self.other_count,
                1: self.one_vote_over_count,
                2: self.two_vote_over_count}[the_type]

    def record_disagreement(self, record: CVRAuditInfo):
        self.disagreements.add(record.id)
        self.disagreement_count += 1

    def remove_disagreement(self, record: CVRAuditInfo):
        self.disagreements.discard(record.id)
        self.disagreement_count -= 1

    def compute_discrepancy(self, cvr: CVR, acvr: CVR):
        '''
        Classify the difference between a CVR and the audit board's interpretation of the
        same ballot, for this contest.

        Parameters
        ----------
        cvr: CVR
            the machine interpretation (or a phantom record)
        acvr: CVR
            the audit board's interpretation (or a phantom ballot)

        Returns
        -------
        None if there is no discrepancy, otherwise an int in {-2, -1, 0, 1, 2}: positive
        values overstate the margin of the reported winners, negative values understate it
        '''
        cvr_info = cvr.contest_info_for(self.contest_name)
        acvr_info = acvr.contest_info_for(self.contest_name)
        if acvr.record_type == CVR.RECORD_TYPE.PHANTOM_BALLOT:
            return self._phantom_ballot_discrepancy(cvr_info) if cvr_info is not None else 1
        if cvr.record_type == CVR.RECORD_TYPE.PHANTOM_RECORD:
            return 2
        if cvr_info is not None and acvr_info is not None:
            if acvr_info.consensus == CVRContestInfo.CONSENSUS.NO:
                return self._phantom_ballot_discrepancy(cvr_info)
            return self._audited_ballot_discrepancy(cvr_info, acvr_info)
        return None

    def _phantom_ballot_discrepancy(self, cvr_info: CVRContestInfo) -> int:
        # a vote for any winner can be taken away, and one given to a loser
        winner_votes = set(cvr_info.choices) - self.contest_result.losers
        return 2 if winner_votes else 1

    @staticmethod
    def _change(choice: str, cvr_choices: set, acvr_choices: set) -> int:
        if choice not in cvr_choices and choice in acvr_choices:
            return 1
        if choice in cvr_choices and choice not in acvr_choices:
            return -1
        return 0

    def _audited_ballot_discrepancy(self, cvr_info: CVRContestInfo, acvr_info: CVRContestInfo):
        # an overvote on the audited ballot counts as no selection, as it does on the CVR
        acvr_choices = (set(acvr_info.choices)
                        if len(acvr_info.choices) <= self.contest_result.winners_allowed else set())
        cvr_choices = set(cvr_info.choices)
        if cvr_choices == acvr_choices:
            return None
        raw_result = None
        possible_understatement = True
        for winner in self.contest_result.winners:
            winner_change = self._change(winner, cvr_choices, acvr_choices)
            if not self.contest_result.losers:
                raw_result = -winner_change if raw_result is None else max(raw_result, -winner_change)
            for loser in self.contest_result.losers:
                discrepancy = self._change(loser, cvr_choices, acvr_choices) - winner_change
                raw_result = discrepancy if raw_result is None else max(raw_result, discrepancy)
                if discrepancy >= 0:
                    possible_understatement = False
        if raw_result is None:
            raise ValueError(f'unable to compute discrepancy in contest {self.contest_name}')
        return raw_result if possible_understatement else max(0, raw_result)
