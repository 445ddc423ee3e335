import re
from datetime import datetime

##########################################################################################
def natural_key(s) -> tuple:
    '''
    sort key that orders embedded runs of digits numerically, so "batch 2" precedes "batch 10"
    '''
    return tuple((0, int(t), '') if t.isdigit() else (1, 0, t.lower())
                 for t in re.split(r'(\d+)', str(s)) if t)


##########################################################################################
class CVRContestInfo:
    '''
    The markings for one contest on one cast vote record, as read by the tabulator or as
    interpreted by an audit board.

    `choices` lists the names of the choices marked. `consensus` records whether the audit
    board agreed about the interpretation; it is meaningful only on audit CVRs.
    '''

    class CONSENSUS:
        CONSENSUSES = (YES:= 'YES',
                       NO:= 'NO')

    def __init__(self, contest: str=None, comment: str=None, consensus: str=None, choices: list=None):
        self.contest = contest
        self.comment = comment
        self.consensus = consensus
        self.choices = list(choices) if choices is not None else []

    def __str__(self):
        return str(self.__dict__)

    def __repr__(self):
        return f'CVRContestInfo({self.contest!r}, choices={self.choices!r}, consensus={self.consensus!r})'

    @classmethod
    def from_dict(cls, d: dict=None):
        ci = CVRContestInfo()
        ci.__dict__.update(d)
        ci.choices = list(ci.choices or [])
        return ci

    def to_dict(self) -> dict:
        return dict(self.__dict__)


##########################################################################################
class CVR:
    '''
    A cast vote record: the machine interpretation of one physical ballot card, or an
    audit board's interpretation of the same card (an audit CVR, "ACVR").

    Identity fields are the county, the scanner, the batch and the record (position) within
    the batch, together with the imprinted id and ballot type. Records are ordered by
    (scanner_id, batch_id, record_id), with batch ids compared in natural order.

    Methods:
    --------
    uri: identifier of the record, distinguishing uploaded, audited and reaudited records
    bmi_uri: identifier of the ballot manifest batch holding the record
    contest_info_for: markings for one contest, or None
    is_audit_pair_with: whether two records describe the same physical ballot
    from_dict: create one CVR or a list of CVRs from dicts
    '''

    class RECORD_TYPE:
        '''
        provenance of a cast vote record
        '''
        RECORD_TYPES = (UPLOADED:= 'UPLOADED',
                        AUDITOR_ENTERED:= 'AUDITOR_ENTERED',
                        REAUDITED:= 'REAUDITED',
                        PHANTOM_RECORD:= 'PHANTOM_RECORD',
                        PHANTOM_RECORD_ACVR:= 'PHANTOM_RECORD_ACVR',
                        PHANTOM_BALLOT:= 'PHANTOM_BALLOT'
                       )
        AUDITOR_GENERATED = (AUDITOR_ENTERED, REAUDITED, PHANTOM_BALLOT)
        SYSTEM_GENERATED = (PHANTOM_RECORD, PHANTOM_RECORD_ACVR)

    def __init__(
                 self,
                 id: object=None,
                 record_type: str=RECORD_TYPE.UPLOADED,
                 timestamp: datetime=None,
                 county_id: int=None,
                 cvr_number: int=None,
                 sequence_number: int=None,
                 scanner_id: int=None,
                 batch_id: str=None,
                 record_id: int=None,
                 imprinted_id: str=None,
                 ballot_type: str=None,
                 contest_info: list=None,
                 revision: int=0,
                 comment: str=None,
                 audit_board_index: int=None,
                 round_number: int=None,
                 rand: int=None):
        self.id = id
        self.record_type = record_type
        self.timestamp = timestamp
        self.county_id = county_id
        self.cvr_number = cvr_number
        self.sequence_number = sequence_number
        self.scanner_id = scanner_id
        self.batch_id = str(batch_id) if batch_id is not None else None
        self.record_id = record_id
        self.imprinted_id = imprinted_id
        self.ballot_type = ballot_type
        self.contest_info = contest_info if contest_info is not None else []
        self.revision = revision
        self.comment = comment
        self.audit_board_index = audit_board_index
        self.round_number = round_number
        self.rand = rand

    def __str__(self):
        return f'{self.uri()} ({self.record_type})'

    def __repr__(self):
        return f'CVR(id={self.id!r}, {self.uri()})'

    def __lt__(self, other):
        return self.sort_key() < other.sort_key()

    def sort_key(self) -> tuple:
        return (self.scanner_id, natural_key(self.batch_id), self.record_id)

    @classmethod
    def from_dict(cls, cvr_dict):
        '''
        Construct a CVR, or a list of CVRs, from dicts.

        Parameters
        ----------
        cvr_dict: dict or list of dicts
            keys are CVR attributes; 'contest_info' may be a list of CVRContestInfo objects
            or of dicts, or a dict mapping contest names to lists of choices

        Returns
        -------
        CVR or list of CVR
        '''
        if isinstance(cvr_dict, list):
            return [cls.from_dict(d) for d in cvr_dict]
        d = dict(cvr_dict)
        info = d.pop('contest_info', None) or []
        if isinstance(info, dict):
            info = [CVRContestInfo(contest=c, choices=ch) for c, ch in info.items()]
        info = [ci if isinstance(ci, CVRContestInfo) else CVRContestInfo.from_dict(ci) for ci in info]
        return CVR(contest_info=info, **d)

    @property
    def is_auditor_generated(self) -> bool:
        return self.record_type in CVR.RECORD_TYPE.AUDITOR_GENERATED

    @property
    def is_system_generated(self) -> bool:
        return self.record_type in CVR.RECORD_TYPE.SYSTEM_GENERATED

    def uri(self) -> str:
        rev = ''
        if self.record_type in (CVR.RECORD_TYPE.UPLOADED, CVR.RECORD_TYPE.PHANTOM_RECORD):
            prefix = 'cvr'
        elif self.record_type == CVR.RECORD_TYPE.REAUDITED:
            prefix = 'rcvr'
            rev = f'?rev={self.revision}'
        else:
            prefix = 'acvr'
        return f'{prefix}:{self.county_id}:{self.scanner_id}-{self.batch_id}-{self.record_id}{rev}'

    def bmi_uri(self) -> str:
        return f'bmi:{self.county_id}:{self.scanner_id}-{self.batch_id}'

    def has_contest(self, contest_name: str) -> bool:
        return self.contest_info_for(contest_name) is not None

    def contest_info_for(self, contest_name: str):
        for ci in self.contest_info:
            if ci.contest == contest_name:
                return ci
        return None

    def set_to_reaudited(self):
        self.record_type = CVR.RECORD_TYPE.REAUDITED

    def is_audit_pair_with(self, other) -> bool:
        '''
        do `self` and `other` describe the same physical ballot?
        '''
        if other is None:
            return False
        return (other.county_id == self.county_id
                and other.cvr_number == self.cvr_number
                and other.scanner_id == self.scanner_id
                and other.batch_id == self.batch_id
                and other.record_id == self.record_id
                and other.imprinted_id == self.imprinted_id
                and other.ballot_type == self.ballot_type)

    def to_dict(self) -> dict:
        d = dict(self.__dict__)
        d['contest_info'] = [ci.to_dict() for ci in self.contest_info]
        return d


##########################################################################################
class CVRAuditInfo:
    '''
    Join record between a CVR drawn for audit and the audit board's interpretation of it.

    Created the first time the ballot is audited; "un-auditing" clears its counts and
    reasons but keeps the record. For each contest, `multiplicity_by_contest` is the number
    of times the ballot was drawn for the contest and `count_by_contest` the number of those
    draws already counted in the contest's audit; the count never exceeds the multiplicity.
    '''

    def __init__(self, cvr: CVR=None):
        self.cvr = cvr
        self.id = cvr.id if cvr is not None else None
        self.acvr = None
        self.multiplicity_by_contest = {}
        self.count_by_contest = {}
        self.discrepancy = set()
        self.disagreement = set()

    def __str__(self):
        return (f'CVRAuditInfo(id={self.id}, acvr={self.acvr}, counts={self.count_by_contest}, '
                f'multiplicities={self.multiplicity_by_contest})')

    def set_acvr(self, acvr: CVR):
        self.acvr = acvr

    def get_multiplicity_by_contest(self, contest_name: str) -> int:
        return self.multiplicity_by_contest.get(contest_name, 0)

    def set_multiplicity_by_contest(self, contest_name: str, multiplicity: int):
        self.multiplicity_by_contest[contest_name] = multiplicity

    def get_count_by_contest(self, contest_name: str) -> int:
        return self.count_by_contest.get(contest_name, 0)

    def set_count_by_contest(self, contest_name: str, count: int):
        assert count >= 0, f'negative count {count} for contest {contest_name}'
        self.count_by_contest[contest_name] = count

    def total_counts(self) -> int:
        return sum(self.count_by_contest.values())

    def reset_counted(self):
        self.count_by_contest = {}

    def set_discrepancy(self, reasons: set):
        self.discrepancy = set(reasons)

    def set_disagreement(self, reasons: set):
        self.disagreement = set(reasons)

    def to_dict(self) -> dict:
        return {'id': self.id,
                'cvr': self.cvr.uri() if self.cvr is not None else None,
                'acvr': self.acvr.uri() if self.acvr is not None else None,
                'multiplicity_by_contest': dict(self.multiplicity_by_contest),
                'count_by_contest': dict(self.count_by_contest),
                'discrepancy': sorted(self.discrepancy),
                'disagreement': sorted(self.disagreement)}
