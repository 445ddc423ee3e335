import logging
from datetime import datetime, timezone

from .Audit import Audit, SelectionCounter
from .ASM import ASM
from .PRNG import PseudoRandomNumberGenerator

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


##########################################################################################
class Round:
    '''
    One pass of ballot retrieval and examination in a county.

    `ballot_sequence` lists the distinct CVR ids to retrieve, in retrieval order;
    `audit_subsequence` lists the CVR ids in draw order, with repeats. The audited prefix
    length is the number of leading ids of the county's audit sequence already audited.
    '''

    def __init__(
                 self,
                 number: int=None,
                 start_time: datetime=None,
                 expected_count: int=0,
                 previous_ballots_audited: int=0,
                 expected_audited_prefix_length: int=0,
                 start_audited_prefix_length: int=0,
                 ballot_sequence: list=None,
                 audit_subsequence: list=None):
        self.number = number
        self.start_time = start_time if start_time is not None else _now()
        self.end_time = None
        self.expected_count = expected_count
        self.actual_count = 0
        self.expected_audited_prefix_length = expected_audited_prefix_length
        self.actual_audited_prefix_length = start_audited_prefix_length
        self.start_audited_prefix_length = start_audited_prefix_length
        self.previous_ballots_audited = previous_ballots_audited
        self.ballot_sequence = list(ballot_sequence) if ballot_sequence is not None else []
        self.audit_subsequence = list(audit_subsequence) if audit_subsequence is not None else []
        self.discrepancies = SelectionCounter()
        self.disagreements = SelectionCounter()
        self.signatories = {}

    def __str__(self):
        return (f'Round [number={self.number}, expected_count={self.expected_count}, '
                f'actual_count={self.actual_count}, '
                f'audited_prefix_length={self.actual_audited_prefix_length}/{self.expected_audited_prefix_length}]')

    def add_audited_ballot(self):
        self.actual_count += 1

    def remove_audited_ballot(self):
        self.actual_count -= 1

    def add_discrepancy(self, reasons):
        self.discrepancies.add(reasons)
        logger.info(f'round {self.number} add_discrepancy: reasons={sorted(reasons)}, '
                    f'discrepancies={self.discrepancies}')

    def remove_discrepancy(self, reasons):
        self.discrepancies.remove(reasons)

    def add_disagreement(self, reasons):
        self.disagreements.add(reasons)

    def remove_disagreement(self, reasons):
        self.disagreements.remove(reasons)

    def set_signatories(self, audit_board_index: int, signatories: list):
        self.signatories[audit_board_index] = list(signatories)

    def to_dict(self) -> dict:
        return {'number': self.number,
                'start_time': self.start_time,
                'end_time': self.end_time,
                'expected_count': self.expected_count,
                'actual_count': self.actual_count,
                'expected_audited_prefix_length': self.expected_audited_prefix_length,
                'actual_audited_prefix_length': self.actual_audited_prefix_length,
                'start_audited_prefix_length': self.start_audited_prefix_length,
                'previous_ballots_audited': self.previous_ballots_audited,
                'discrepancies': self.discrepancies.to_dict(),
                'disagreements': self.disagreements.to_dict()}


##########################################################################################
class AuditBoard:
    '''
    the members of one audit board and when they signed in and out
    '''

    MIN_MEMBERS = 2

    def __init__(self, members: list=None, sign_in_time: datetime=None):
        self.members = list(members) if members is not None else []
        self.sign_in_time = sign_in_time if sign_in_time is not None else _now()
        self.sign_out_time = None

    def __str__(self):
        return f'AuditBoard(members={self.members}, sign_in_time={self.sign_in_time})'


class AuditInvestigationReportInfo:

    def __init__(self, timestamp: datetime=None, name: str=None, report: str=None):
        self.timestamp = timestamp if timestamp is not None else _now()
        self.name = name
        self.report = report


class IntermediateAuditReportInfo:

    def __init__(self, timestamp: datetime=None, report: str=None):
        self.timestamp = timestamp if timestamp is not None else _now()
        self.report = report


##########################################################################################
class CountyDashboard:
    '''
    The audit state of one county: its rounds, the comparison audits of contests on its
    ballots, its audit boards, and running counts of audited ballots, discrepancies and
    disagreements.

    Methods:
    --------
    start_round, end_round: open and close the current round
    add_audited_ballot, remove_audited_ballot: count ballots audited in the current round
    add_discrepancy, remove_discrepancy, add_disagreement, remove_disagreement: maintain
        the county and round counters
    all_audits_complete: are all audits driving the county finished?
    estimated_samples_to_audit, optimistic_samples_to_audit: ballots still to audit
    '''

    def __init__(self, county_id: int=None, county_name: str=None):
        self.id = county_id
        self.county_id = county_id
        self.county_name = county_name
        self.rounds = []
        self.current_round_index = None
        self.driving_contest_names = set()
        self.audits = []
        self.ballots_audited = 0
        self.audited_prefix_length = None
        self.audited_sample_count = 0
        self.discrepancies = SelectionCounter()
        self.disagreements = SelectionCounter()
        self.audit_boards = {}
        self.audit_board_count = None
        self.investigation_reports = []
        self.intermediate_reports = []
        self.audit_timestamp = None

    def __str__(self):
        return f'CountyDashboard [county={self.county_id}]'

    @property
    def identity(self) -> str:
        '''
        state machine identity of this county
        '''
        return str(self.county_id)

#################### audit boards
    def sign_in_audit_board(self, index: int, members: list):
        assert len(members) >= AuditBoard.MIN_MEMBERS, \
            f'an audit board needs at least {AuditBoard.MIN_MEMBERS} members'
        if index in self.audit_boards:
            self.sign_out_audit_board(index)
        self.audit_boards[index] = AuditBoard(members, _now())

    def sign_out_audit_board(self, index: int):
        board = self.audit_boards.pop(index, None)
        if board is not None:
            board.sign_out_time = _now()

    def sign_out_all_audit_boards(self):
        for index in list(self.audit_boards):
            self.sign_out_audit_board(index)

    def are_audit_boards_signed_in(self) -> bool:
        return all(i in self.audit_boards for i in range(self.audit_board_count or 0))

    def are_audit_boards_signed_out(self) -> bool:
        return not any(i in self.audit_boards for i in range(self.audit_board_count or 0))

#################### rounds
    def current_round(self):
        if self.current_round_index is None:
            return None
        return self.rounds[self.current_round_index]

    def start_round(self, number_of_ballots: int, prefix_length: int, start_index: int,
                    ballot_sequence: list, audit_subsequence: list):
        '''
        Begin a new round.

        Parameters
        ----------
        number_of_ballots: int
            distinct ballots to retrieve
        prefix_length: int
            audited prefix length the round is expected to reach
        start_index: int
            audited prefix length at the start of the round
        ballot_sequence: list
            CVR ids in retrieval order
        audit_subsequence: list
            CVR ids in draw order, with repeats
        '''
        if self.current_round_index is not None:
            raise ValueError('cannot start a round while one is running')
        self.current_round_index = len(self.rounds)
        self.rounds.append(Round(self.current_round_index + 1, _now(), number_of_ballots,
                                 self.ballots_audited, prefix_length, start_index,
                                 ballot_sequence, audit_subsequence))
        logger.info(f'county {self.county_id} started round {self.current_round_index + 1} '
                    f'with {number_of_ballots} ballots')

    def end_round(self):
        if self.current_round_index is None:
            return
        self.audit_board_count = None
        self.sign_out_all_audit_boards()
        self.rounds[self.current_round_index].end_time = _now()
        self.current_round_index = None

    def ballots_remaining_in_current_round(self) -> int:
        r = self.current_round()
        if r is None:
            return 0
        return len(r.ballot_sequence) - r.actual_count

    def add_audited_ballot(self):
        if self.current_round_index is not None:
            self.ballots_audited += 1
            self.current_round().add_audited_ballot()

    def remove_audited_ballot(self):
        if self.current_round_index is not None:
            self.ballots_audited -= 1
            self.current_round().remove_audited_ballot()

    def set_audited_prefix_length(self, length: int):
        if self.current_round_index is not None:
            self.audited_prefix_length = length
            self.current_round().actual_audited_prefix_length = length

    def set_audited_sample_count(self, count: int):
        self.audited_sample_count = count

#################### discrepancies and disagreements
    def add_discrepancy(self, reasons):
        logger.debug(f'add_discrepancy for county {self.county_id}: reasons={sorted(reasons)}')
        self.discrepancies.add(reasons)
        if self.current_round_index is not None:
            self.current_round().add_discrepancy(reasons)

    def remove_discrepancy(self, reasons):
        self.discrepancies.remove(reasons)
        if self.current_round_index is not None:
            self.current_round().remove_discrepancy(reasons)

    def add_disagreement(self, reasons):
        self.disagreements.add(reasons)
        if self.current_round_index is not None:
            self.current_round().add_disagreement(reasons)

    def remove_disagreement(self, reasons):
        self.disagreements.remove(reasons)
        if self.current_round_index is not None:
            self.current_round().remove_disagreement(reasons)

#################### audits
    def set_audits(self, audits):
        self.audits = list(audits)

    def set_driving_contest_names(self, names):
        self.driving_contest_names = set(names)

    def _driving_audits(self) -> list:
        return [ca for ca in self.audits if ca.audit_reason != Audit.AUDIT_REASON.OPPORTUNISTIC_BENEFITS]

    def all_audits_complete(self) -> bool:
        return all(ca.is_finished() for ca in self._driving_audits())

    def estimated_samples_to_audit(self) -> int:
        return sum(ca.estimated_remaining() for ca in self._driving_audits())

    def optimistic_samples_to_audit(self) -> int:
        return max((ca.optimistic_samples_to_audit() for ca in self._driving_audits()), default=0)

    def end_audits(self):
        for ca in self.audits:
            ca.end_audit()

    def end_single_county_audits(self) -> list:
        ended = [ca for ca in self.audits if ca.is_single_county_for(self.county_id)]
        for ca in ended:
            ca.end_audit()
        return ended

    def update_audit_status(self):
        for ca in self.audits:
            ca.update_audit_status()

#################### reports
    def submit_investigation_report(self, report: AuditInvestigationReportInfo):
        self.investigation_reports.append(report)

    def submit_intermediate_report(self, report: IntermediateAuditReportInfo):
        self.intermediate_reports.append(report)


##########################################################################################
class AuditInfo:
    '''
    Election-wide audit parameters set by the Department of State.

    canonical_contests maps county names to their contest names; canonical_choices maps
    contest names to their choice names.
    '''

    ATTRIBUTES = ('election_type', 'election_date', 'public_meeting_date', 'seed', 'risk_limit',
                  'canonical_contests', 'canonical_choices')

    def __init__(
                 self,
                 election_type: str=None,
                 election_date: datetime=None,
                 public_meeting_date: datetime=None,
                 seed: str=None,
                 risk_limit=None,
                 canonical_contests: dict=None,
                 canonical_choices: dict=None):
        self.election_type = election_type
        self.election_date = election_date
        self.public_meeting_date = public_meeting_date
        self.seed = seed
        self.risk_limit = risk_limit
        self.canonical_contests = canonical_contests if canonical_contests is not None else {}
        self.canonical_choices = canonical_choices if canonical_choices is not None else {}

    def __str__(self):
        return str(self.__dict__)

    @classmethod
    def from_dict(cls, d: dict=None):
        '''
        Build AuditInfo from a dict, checking the seed and risk limit if they are given.
        '''
        a = AuditInfo()
        a.__dict__.update(d)
        if a.seed is not None and not DoSDashboard.is_valid_seed(a.seed):
            raise ValueError(f'seed must contain only digits and have at least '
                             f'{PseudoRandomNumberGenerator.MINIMUM_SEED_LENGTH} of them')
        if a.risk_limit is not None:
            a.risk_limit = Audit.as_decimal(a.risk_limit)
            assert 0 < a.risk_limit <= Audit.as_decimal(0.5), f'risk limit {a.risk_limit} not in (0, 1/2]'
        return a

    @staticmethod
    def _empty(value) -> bool:
        return value is None or (hasattr(value, '__len__') and len(value) == 0) or value == 0

    def combine(self, other):
        '''
        a new AuditInfo taking each field from `other` unless it is empty there
        '''
        return AuditInfo(**{k: getattr(self if self._empty(getattr(other, k)) else other, k)
                            for k in self.ATTRIBUTES})

    def is_complete(self) -> bool:
        return (bool(self.election_type) and self.election_date is not None
                and self.public_meeting_date is not None and DoSDashboard.is_valid_seed(self.seed)
                and self.risk_limit is not None and self.risk_limit > 0)


##########################################################################################
class ContestToAudit:
    '''
    a contest the Department of State selected for audit, with the reason and the kind of audit
    '''

    def __init__(self, contest=None, reason: str=None, audit: str=Audit.AUDIT_TYPE.COMPARISON):
        self.contest = contest
        self.reason = reason
        self.audit = audit

    def __str__(self):
        return f'ContestToAudit({self.contest.name}, {self.reason}, {self.audit})'

    def is_auditable(self) -> bool:
        return self.audit not in (Audit.AUDIT_TYPE.HAND_COUNT, Audit.AUDIT_TYPE.NOT_AUDITABLE)


##########################################################################################
class DoSDashboard:
    '''
    Department of State context for one statewide audit: the audit parameters and the
    contests selected for audit. One instance is created per audit and passed to the
    orchestration that needs it.
    '''

    def __init__(self, audit_info: AuditInfo=None, identity: str=ASM.DOS_IDENTITY):
        self.identity = identity
        self.audit_info = audit_info if audit_info is not None else AuditInfo()
        self.contests_to_audit = []

    def __str__(self):
        return f'DoSDashboard [identity={self.identity}, contests_to_audit={len(self.contests_to_audit)}]'

    @staticmethod
    def is_valid_seed(seed: str) -> bool:
        return (seed is not None and len(seed) >= PseudoRandomNumberGenerator.MINIMUM_SEED_LENGTH
                and PseudoRandomNumberGenerator.seed_only_contains_digits(seed))

    def update_audit_info(self, new_info: AuditInfo, asm_store=None) -> AuditInfo:
        '''
        Merge new parameters into the audit info. If `asm_store` is given, step the DoS
        state machine to record whether the audit definition is now partial or complete;
        the info is only replaced if the step is legal.
        '''
        combined = self.audit_info.combine(new_info)
        if asm_store is not None:
            event = (ASM.DOS_EVENT.COMPLETE_AUDIT_INFO_EVENT if combined.is_complete()
                     else ASM.DOS_EVENT.PARTIAL_AUDIT_INFO_EVENT)
            asm_store.step(ASM.KIND.DOS_DASHBOARD, self.identity, event)
        self.audit_info = combined
        return self.audit_info

    def update_contest_to_audit(self, contest_to_audit: ContestToAudit) -> bool:
        '''
        Replace any existing selection of the same contest; an audit type of NONE removes the
        contest. A contest already marked NOT_AUDITABLE cannot be changed.

        Returns
        -------
        bool: whether the update was applied
        '''
        existing = None
        for c in self.contests_to_audit:
            if c.contest is contest_to_audit.contest or (c.contest.name == contest_to_audit.contest.name
                                                         and c.contest.county_id == contest_to_audit.contest.county_id):
                existing = c
                break
        if existing is not None and existing.audit == Audit.AUDIT_TYPE.NOT_AUDITABLE:
            return False
        if existing is not None:
            self.contests_to_audit.remove(existing)
        if contest_to_audit.audit != Audit.AUDIT_TYPE.NONE:
            self.contests_to_audit.append(contest_to_audit)
        return True

    def remove_contests_to_audit_for_county(self, county_id) -> bool:
        before = len(self.contests_to_audit)
        self.contests_to_audit = [c for c in self.contests_to_audit if c.contest.county_id != county_id]
        return len(self.contests_to_audit) < before

    def remove_unauditable_contests_to_audit(self):
        self.contests_to_audit = [c for c in self.contests_to_audit if c.is_auditable()]

    def remove_contest_to_audit_by_name(self, contest_name: str):
        self.contests_to_audit = [c for c in self.contests_to_audit if c.contest.name != contest_name]

    def targeted_contests(self) -> list:
        return [c.contest for c in self.contests_to_audit]

    def targeted_contest_names(self) -> set:
        return {c.contest.name for c in self.contests_to_audit}

    def audit_reasons(self) -> dict:
        '''
        audit reason by contest name, for auditable contests
        '''
        return {c.contest.name: c.reason for c in self.contests_to_audit if c.is_auditable()}
