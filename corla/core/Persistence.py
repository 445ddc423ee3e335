import json
import logging
import threading
from collections import OrderedDict, defaultdict
from decimal import Decimal

import numpy as np

from .ASM import ASM, AbstractStateMachine
from .CVR import CVR, CVRAuditInfo
from .ComparisonAudit import ComparisonAudit

logger = logging.getLogger(__name__)

##########################################################################################
class CorlaEncoder(json.JSONEncoder):
    '''
    for json dumps of audit state: Decimal, numpy scalars and arrays, sets, and model
    objects that provide to_dict
    '''
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        if hasattr(obj, 'isoformat'):
            return obj.isoformat()
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if isinstance(obj, AbstractStateMachine):
            return obj.__str__()
        return super(CorlaEncoder, self).default(obj)


##########################################################################################
class ASMStore:
    '''
    Current states of state machines, keyed by (kind, identity).

    Machines are rebuilt from their kind's table on every `get`; only the current state is
    kept. `step` loads, steps and saves under a lock held per identity, so events for one
    identity are applied one at a time and in order.
    '''

    def __init__(self):
        self.states = {}
        self._locks = defaultdict(threading.RLock)
        self._locks_lock = threading.Lock()

    def lock_for(self, identity: str):
        with self._locks_lock:
            return self._locks[str(identity)]

    def get(self, kind: str, identity: str=None) -> AbstractStateMachine:
        '''
        the machine of `kind` for `identity`, in its saved state or, if none was saved,
        in its initial state
        '''
        asm = ASM.make(kind, identity)
        state = self.states.get((kind, asm.identity))
        if state is not None:
            asm.set_current_state(state)
        return asm

    def save(self, asm: AbstractStateMachine):
        self.states[(asm.kind, asm.identity)] = asm.current_state

    def step(self, kind: str, identity: str, event: str) -> str:
        '''
        Apply `event` to the saved machine and save the result.

        Returns
        -------
        the new current state

        Raises
        ------
        IllegalTransitionError; the saved state is unchanged
        '''
        identity = ASM.DOS_IDENTITY if identity is None else str(identity)
        with self.lock_for(identity):
            asm = self.get(kind, identity)
            asm.step_event(event)
            self.save(asm)
            return asm.current_state

    def current_state(self, kind: str, identity: str=None) -> str:
        return self.get(kind, identity).current_state

    def to_dict(self) -> dict:
        return {f'{kind}/{identity}': state for (kind, identity), state in self.states.items()}


##########################################################################################
class Store:
    '''
    In-memory keyed object store. Objects are keyed by their type and their `id`.

    Methods:
    --------
    get: object of a type with an id, or None
    save: add an object; a second save of the same key raises ValueError
    save_or_update: add or replace an object
    get_all: every object of a type, in the order first saved
    delete: remove an object
    snapshot, dump: the persisted state as plain data, and as JSON
    '''

    def __init__(self):
        self.objects = OrderedDict()
        self.asm = ASMStore()

    @staticmethod
    def _key(obj_id, obj_type) -> tuple:
        return (obj_type.__name__, obj_id)

    def get(self, obj_id, obj_type):
        return self.objects.get(self._key(obj_id, obj_type))

    def save(self, obj):
        key = self._key(obj.id, type(obj))
        if key in self.objects:
            raise ValueError(f'{key[0]} with id {obj.id} already saved')
        self.objects[key] = obj
        return obj

    def save_or_update(self, obj):
        self.objects[self._key(obj.id, type(obj))] = obj
        return obj

    def get_all(self, obj_type) -> list:
        return [obj for (name, _), obj in self.objects.items() if name == obj_type.__name__]

    def delete(self, obj) -> bool:
        return self.objects.pop(self._key(obj.id, type(obj)), None) is not None

    def snapshot(self) -> dict:
        '''
        the persisted state: state machine records, comparison audits keyed by contest,
        and CVRAuditInfo keyed by CVR id
        '''
        return {'asm': self.asm.to_dict(),
                'comparison_audits': {str(ca.id): ca.to_dict() for ca in self.get_all(ComparisonAudit)},
                'cvr_audit_info': {str(info.id): info.to_dict() for info in self.get_all(CVRAuditInfo)}}

    def dump(self, fp, indent: int=2):
        json.dump(self.snapshot(), fp, sort_keys=True, indent=indent, cls=CorlaEncoder)


##########################################################################################
class ManifestLookup:
    '''
    Ballot manifest segments of every county.
    '''

    def __init__(self, segments=None):
        self.segments = list(segments) if segments is not None else []

    def add(self, segments):
        self.segments.extend(segments)

    def delete_county(self, county_id) -> int:
        before = len(self.segments)
        self.segments = [s for s in self.segments if s.county_id != county_id]
        return before - len(self.segments)

    def for_county(self, county_id) -> list:
        return [s for s in self.segments if s.county_id == county_id]

    def total_ballots(self, county_ids) -> int:
        county_ids = set(county_ids)
        return sum(s.batch_size for s in self.segments if s.county_id in county_ids)

    def segments_matching(self, county_ids) -> list:
        county_ids = set(county_ids)
        return [s for s in self.segments if s.county_id in county_ids]

    def location_for(self, cvr: CVR):
        '''
        storage location of the batch holding `cvr`, or None if no manifest lists the batch
        '''
        for s in self.segments:
            if (s.county_id == cvr.county_id and s.scanner_id == cvr.scanner_id
                    and s.batch_id == cvr.batch_id):
                return s.storage_location
        return None


##########################################################################################
class CVRLookup:
    '''
    Uploaded cast vote records, the audit CVRs submitted for them, and phantom records made
    for drawn ballots that have no cast vote record.
    '''

    def __init__(self, cvrs=None):
        self.cvrs = OrderedDict()
        self._by_position = {}
        self.acvrs = []
        for cvr in (cvrs or []):
            self.add(cvr)

    @staticmethod
    def _position(county_id, scanner_id, batch_id, record_id) -> tuple:
        return (county_id, scanner_id, str(batch_id), record_id)

    def add(self, cvr: CVR):
        self.cvrs[cvr.id] = cvr
        self._by_position[self._position(cvr.county_id, cvr.scanner_id, cvr.batch_id, cvr.record_id)] = cvr

    def get(self, cvr_id):
        return self.cvrs.get(cvr_id)

    def by_ids(self, cvr_ids) -> list:
        '''
        CVRs with the given ids, in the order given; unknown ids are skipped
        '''
        return [self.cvrs[i] for i in cvr_ids if i in self.cvrs]

    def for_county(self, county_id) -> list:
        return [c for c in self.cvrs.values()
                if c.county_id == county_id and c.record_type == CVR.RECORD_TYPE.UPLOADED]

    @staticmethod
    def phantom_record(tribute) -> CVR:
        return CVR(id=tribute.uri(),
                   record_type=CVR.RECORD_TYPE.PHANTOM_RECORD,
                   county_id=tribute.county_id,
                   cvr_number=0,
                   sequence_number=0,
                   scanner_id=tribute.scanner_id,
                   batch_id=tribute.batch_id,
                   record_id=tribute.ballot_position,
                   imprinted_id=f'{tribute.scanner_id}-{tribute.batch_id}-{tribute.ballot_position}',
                   ballot_type=CVR.RECORD_TYPE.PHANTOM_RECORD)

    def at_tribute_positions(self, tributes) -> list:
        '''
        The CVR at each tribute's position, in tribute order. A tribute with no CVR gets a
        phantom record, which is kept so that later draws of the same position find it.
        '''
        result = []
        for t in tributes:
            key = self._position(t.county_id, t.scanner_id, t.batch_id, t.ballot_position)
            cvr = self._by_position.get(key)
            if cvr is None:
                cvr = self.phantom_record(t)
                logger.info(f'no cvr at {t.uri()}; using phantom record')
                self.add(cvr)
            result.append(cvr)
        return result

    def save_acvr(self, acvr: CVR):
        self.acvrs.append(acvr)

    def max_revision(self, cvr: CVR) -> int:
        '''
        highest revision among the audit CVRs submitted for `cvr`'s ballot; 0 if none
        '''
        return max((a.revision for a in self.acvrs if cvr.is_audit_pair_with(a)), default=0)
