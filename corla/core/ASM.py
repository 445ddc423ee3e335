import logging

logger = logging.getLogger(__name__)

##########################################################################################
class IllegalTransitionError(Exception):
    '''
    no transition of a state machine accepts the event in the machine's current state
    '''

    def __init__(self, kind: str, identity: str, state: str, event: str):
        self.kind = kind
        self.identity = identity
        self.state = state
        self.event = event
        super().__init__(f'illegal transition on {kind}/{identity}: ({state}, {event})')


##########################################################################################
class ASMTransition:
    '''
    (start states, events) -> end state
    '''

    def __init__(self, start_states, events, end_state: str):
        self.start_states = frozenset([start_states] if isinstance(start_states, str) else start_states)
        self.events = frozenset([events] if isinstance(events, str) else events)
        self.end_state = end_state

    def __str__(self):
        return f'ASMTransition [start={sorted(self.start_states)}, events={sorted(self.events)}, end={self.end_state}]'

    def accepts(self, state: str, event: str) -> bool:
        return state in self.start_states and event in self.events


##########################################################################################
class MachineTable:
    '''
    the fixed definition of one kind of state machine
    '''

    def __init__(self, states, events, transitions, initial_state: str, final_states):
        self.states = frozenset(states)
        self.events = frozenset(events)
        self.transitions = tuple(transitions)
        self.initial_state = initial_state
        self.final_states = frozenset(final_states)
        assert initial_state in self.states, f'initial state {initial_state} is not a state'
        assert self.final_states <= self.states, 'final states must be states'
        for t in self.transitions:
            assert t.start_states <= self.states and t.end_state in self.states, f'{t} uses undeclared states'
            assert t.events <= self.events, f'{t} uses undeclared events'


##########################################################################################
class ASM:
    '''
    Kinds, states and events of the state machines that govern the audit workflow.

    KIND tags the three machines: the county dashboard (ballot manifest and CVR import, then
    the county audit), the audit board dashboard (rounds, sign-in and sign-out of audit
    boards), and the Department of State dashboard (audit definition, rounds, publication).
    Each machine instance is scoped by an identity string: a county id for county and audit
    board machines, DOS_IDENTITY for the state machine.
    '''

    DOS_IDENTITY = 'DoS'

    class KIND:
        KINDS = (COUNTY_DASHBOARD:= 'CountyDashboardASM',
                 AUDIT_BOARD_DASHBOARD:= 'AuditBoardDashboardASM',
                 DOS_DASHBOARD:= 'DoSDashboardASM'
                )

    class COUNTY_STATE:
        STATES = (COUNTY_INITIAL_STATE:= 'COUNTY_INITIAL_STATE',
                  BALLOT_MANIFEST_OK:= 'BALLOT_MANIFEST_OK',
                  CVRS_IMPORTING:= 'CVRS_IMPORTING',
                  CVRS_OK:= 'CVRS_OK',
                  BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING:= 'BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING',
                  BALLOT_MANIFEST_AND_CVRS_OK:= 'BALLOT_MANIFEST_AND_CVRS_OK',
                  COUNTY_AUDIT_UNDERWAY:= 'COUNTY_AUDIT_UNDERWAY',
                  COUNTY_AUDIT_COMPLETE:= 'COUNTY_AUDIT_COMPLETE',
                  DEADLINE_MISSED:= 'DEADLINE_MISSED'
                 )

    class COUNTY_EVENT:
        EVENTS = (IMPORT_BALLOT_MANIFEST_EVENT:= 'IMPORT_BALLOT_MANIFEST_EVENT',
                  IMPORT_CVRS_EVENT:= 'IMPORT_CVRS_EVENT',
                  DELETE_BALLOT_MANIFEST_EVENT:= 'DELETE_BALLOT_MANIFEST_EVENT',
                  DELETE_CVRS_EVENT:= 'DELETE_CVRS_EVENT',
                  CVR_IMPORT_SUCCESS_EVENT:= 'CVR_IMPORT_SUCCESS_EVENT',
                  CVR_IMPORT_FAILURE_EVENT:= 'CVR_IMPORT_FAILURE_EVENT',
                  COUNTY_START_AUDIT_EVENT:= 'COUNTY_START_AUDIT_EVENT',
                  COUNTY_AUDIT_COMPLETE_EVENT:= 'COUNTY_AUDIT_COMPLETE_EVENT'
                 )

    class AUDIT_BOARD_STATE:
        STATES = (AUDIT_INITIAL_STATE:= 'AUDIT_INITIAL_STATE',
                  WAITING_FOR_ROUND_START:= 'WAITING_FOR_ROUND_START',
                  WAITING_FOR_ROUND_START_NO_AUDIT_BOARD:= 'WAITING_FOR_ROUND_START_NO_AUDIT_BOARD',
                  ROUND_IN_PROGRESS:= 'ROUND_IN_PROGRESS',
                  ROUND_IN_PROGRESS_NO_AUDIT_BOARD:= 'ROUND_IN_PROGRESS_NO_AUDIT_BOARD',
                  WAITING_FOR_ROUND_SIGN_OFF:= 'WAITING_FOR_ROUND_SIGN_OFF',
                  WAITING_FOR_ROUND_SIGN_OFF_NO_AUDIT_BOARD:= 'WAITING_FOR_ROUND_SIGN_OFF_NO_AUDIT_BOARD',
                  AUDIT_COMPLETE:= 'AUDIT_COMPLETE',
                  UNABLE_TO_AUDIT:= 'UNABLE_TO_AUDIT',
                  AUDIT_ABORTED:= 'AUDIT_ABORTED'
                 )

    class AUDIT_BOARD_EVENT:
        EVENTS = (COUNTY_DEADLINE_MISSED_EVENT:= 'COUNTY_DEADLINE_MISSED_EVENT',
                  NO_CONTESTS_TO_AUDIT_EVENT:= 'NO_CONTESTS_TO_AUDIT_EVENT',
                  REPORT_MARKINGS_EVENT:= 'REPORT_MARKINGS_EVENT',
                  REPORT_BALLOT_NOT_FOUND_EVENT:= 'REPORT_BALLOT_NOT_FOUND_EVENT',
                  SUBMIT_AUDIT_INVESTIGATION_REPORT_EVENT:= 'SUBMIT_AUDIT_INVESTIGATION_REPORT_EVENT',
                  SUBMIT_INTERMEDIATE_AUDIT_REPORT_EVENT:= 'SUBMIT_INTERMEDIATE_AUDIT_REPORT_EVENT',
                  SIGN_OUT_AUDIT_BOARD_EVENT:= 'SIGN_OUT_AUDIT_BOARD_EVENT',
                  SIGN_IN_AUDIT_BOARD_EVENT:= 'SIGN_IN_AUDIT_BOARD_EVENT',
                  ROUND_START_EVENT:= 'ROUND_START_EVENT',
                  ROUND_COMPLETE_EVENT:= 'ROUND_COMPLETE_EVENT',
                  ROUND_SIGN_OFF_EVENT:= 'ROUND_SIGN_OFF_EVENT',
                  RISK_LIMIT_ACHIEVED_EVENT:= 'RISK_LIMIT_ACHIEVED_EVENT',
                  ABORT_AUDIT_EVENT:= 'ABORT_AUDIT_EVENT',
                  BALLOTS_EXHAUSTED_EVENT:= 'BALLOTS_EXHAUSTED_EVENT'
                 )

    class DOS_STATE:
        STATES = (DOS_INITIAL_STATE:= 'DOS_INITIAL_STATE',
                  PARTIAL_AUDIT_INFO_SET:= 'PARTIAL_AUDIT_INFO_SET',
                  COMPLETE_AUDIT_INFO_SET:= 'COMPLETE_AUDIT_INFO_SET',
                  RANDOM_SEED_PUBLISHED:= 'RANDOM_SEED_PUBLISHED',
                  DOS_AUDIT_ONGOING:= 'DOS_AUDIT_ONGOING',
                  DOS_ROUND_COMPLETE:= 'DOS_ROUND_COMPLETE',
                  DOS_AUDIT_COMPLETE:= 'DOS_AUDIT_COMPLETE',
                  AUDIT_RESULTS_PUBLISHED:= 'AUDIT_RESULTS_PUBLISHED'
                 )

    class DOS_EVENT:
        EVENTS = (PARTIAL_AUDIT_INFO_EVENT:= 'PARTIAL_AUDIT_INFO_EVENT',
                  COMPLETE_AUDIT_INFO_EVENT:= 'COMPLETE_AUDIT_INFO_EVENT',
                  DOS_START_ROUND_EVENT:= 'DOS_START_ROUND_EVENT',
                  DOS_ROUND_COMPLETE_EVENT:= 'DOS_ROUND_COMPLETE_EVENT',
                  AUDIT_EVENT:= 'AUDIT_EVENT',
                  DOS_COUNTY_AUDIT_COMPLETE_EVENT:= 'DOS_COUNTY_AUDIT_COMPLETE_EVENT',
                  DOS_AUDIT_COMPLETE_EVENT:= 'DOS_AUDIT_COMPLETE_EVENT',
                  PUBLISH_AUDIT_REPORT_EVENT:= 'PUBLISH_AUDIT_REPORT_EVENT'
                 )

    @classmethod
    def table(cls, kind: str) -> MachineTable:
        if kind not in MACHINES:
            raise ValueError(f'unknown state machine kind {kind}')
        return MACHINES[kind]

    @classmethod
    def make(cls, kind: str, identity: str=None):
        '''
        Construct a state machine of the given kind, in its initial state.

        Parameters
        ----------
        kind: str
            one of ASM.KIND.KINDS
        identity: str
            scope of the instance; defaults to DOS_IDENTITY for the DoS dashboard

        Returns
        -------
        AbstractStateMachine
        '''
        if identity is None:
            if kind != ASM.KIND.DOS_DASHBOARD:
                raise ValueError(f'{kind} requires an identity')
            identity = ASM.DOS_IDENTITY
        return AbstractStateMachine(kind, str(identity))


##########################################################################################
class AbstractStateMachine:
    '''
    One instance of a state machine: a kind's fixed table and the current state of one
    identity.

    Methods:
    --------
    step_event: take the first transition that accepts the event from the current state
    check_event: would step_event succeed?
    enabled_events: events accepted from the current state
    reinitialize: return to the initial state
    '''

    def __init__(self, kind: str, identity: str):
        self.kind = kind
        self.identity = identity
        self._table = ASM.table(kind)
        self.current_state = self._table.initial_state

    def __str__(self):
        return f'{self.kind}, identity={self.identity}, current_state={self.current_state}'

    @property
    def states(self) -> frozenset:
        return self._table.states

    @property
    def events(self) -> frozenset:
        return self._table.events

    @property
    def transitions(self) -> tuple:
        return self._table.transitions

    @property
    def initial_state(self) -> str:
        return self._table.initial_state

    @property
    def final_states(self) -> frozenset:
        return self._table.final_states

    def is_in_initial_state(self) -> bool:
        return self.current_state == self.initial_state

    def is_in_final_state(self) -> bool:
        return self.current_state in self.final_states

    def set_current_state(self, state: str):
        '''
        restore a persisted state
        '''
        if state not in self.states:
            raise ValueError(f'{state} is not a state of {self.kind}')
        self.current_state = state

    def reinitialize(self):
        self.current_state = self.initial_state

    def enabled_events(self) -> set:
        result = set()
        for t in self.transitions:
            if self.current_state in t.start_states:
                result |= t.events
        return result

    def _find(self, event: str):
        for t in self.transitions:
            if t.accepts(self.current_state, event):
                return t
        return None

    def check_event(self, event: str) -> bool:
        return self._find(event) is not None

    def step_event(self, event: str) -> str:
        '''
        Move to the end state of the first transition accepting `event` in the current state.

        Returns
        -------
        the new current state

        Raises
        ------
        IllegalTransitionError if no transition accepts the event; the state is unchanged
        '''
        t = self._find(event)
        if t is None:
            logger.error(f'ASM event {event} failed from state {self.current_state} '
                         f'for {self.kind}/{self.identity}')
            raise IllegalTransitionError(self.kind, self.identity, self.current_state, event)
        self.current_state = t.end_state
        logger.debug(f'ASM event {event} caused transition to {self.current_state} '
                     f'for {self.kind}/{self.identity}')
        return self.current_state

    def step_transition(self, transition: ASMTransition) -> str:
        if self.current_state not in transition.start_states:
            logger.error(f'ASM transition {transition} failed from state {self.current_state}')
            raise IllegalTransitionError(self.kind, self.identity, self.current_state,
                                         ','.join(sorted(transition.events)))
        self.current_state = transition.end_state
        return self.current_state


##########################################################################################
def _county_dashboard() -> MachineTable:
    S, E = ASM.COUNTY_STATE, ASM.COUNTY_EVENT
    transitions = [
        ASMTransition(S.COUNTY_INITIAL_STATE, E.IMPORT_BALLOT_MANIFEST_EVENT, S.BALLOT_MANIFEST_OK),
        ASMTransition(S.COUNTY_INITIAL_STATE, E.IMPORT_CVRS_EVENT, S.CVRS_IMPORTING),
        ASMTransition(S.CVRS_IMPORTING, E.CVR_IMPORT_SUCCESS_EVENT, S.CVRS_OK),
        ASMTransition(S.CVRS_IMPORTING, E.CVR_IMPORT_FAILURE_EVENT, S.COUNTY_INITIAL_STATE),
        ASMTransition(S.BALLOT_MANIFEST_OK, E.IMPORT_CVRS_EVENT, S.BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING),
        ASMTransition(S.BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING, E.CVR_IMPORT_SUCCESS_EVENT,
                      S.BALLOT_MANIFEST_AND_CVRS_OK),
        ASMTransition(S.BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING, E.CVR_IMPORT_FAILURE_EVENT, S.BALLOT_MANIFEST_OK),
        ASMTransition(S.BALLOT_MANIFEST_OK, E.IMPORT_BALLOT_MANIFEST_EVENT, S.BALLOT_MANIFEST_OK),
        ASMTransition(S.BALLOT_MANIFEST_OK, E.DELETE_CVRS_EVENT, S.BALLOT_MANIFEST_OK),
        ASMTransition(S.CVRS_OK, E.IMPORT_BALLOT_MANIFEST_EVENT, S.BALLOT_MANIFEST_AND_CVRS_OK),
        ASMTransition(S.CVRS_OK, E.IMPORT_CVRS_EVENT, S.CVRS_IMPORTING),
        ASMTransition(S.BALLOT_MANIFEST_AND_CVRS_OK, E.IMPORT_BALLOT_MANIFEST_EVENT, S.BALLOT_MANIFEST_AND_CVRS_OK),
        ASMTransition(S.BALLOT_MANIFEST_AND_CVRS_OK, E.DELETE_BALLOT_MANIFEST_EVENT, S.CVRS_OK),
        ASMTransition(S.BALLOT_MANIFEST_AND_CVRS_OK, E.DELETE_CVRS_EVENT, S.BALLOT_MANIFEST_OK),
        ASMTransition(S.BALLOT_MANIFEST_AND_CVRS_OK, E.IMPORT_CVRS_EVENT, S.BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING),
        ASMTransition(S.BALLOT_MANIFEST_AND_CVRS_OK, E.COUNTY_START_AUDIT_EVENT, S.COUNTY_AUDIT_UNDERWAY),
        ASMTransition(S.COUNTY_AUDIT_UNDERWAY, E.COUNTY_AUDIT_COMPLETE_EVENT, S.COUNTY_AUDIT_COMPLETE),
        # the audit started before this county was ready
        ASMTransition({S.COUNTY_INITIAL_STATE, S.BALLOT_MANIFEST_OK, S.CVRS_OK, S.CVRS_IMPORTING,
                       S.BALLOT_MANIFEST_OK_AND_CVRS_IMPORTING},
                      E.COUNTY_START_AUDIT_EVENT, S.DEADLINE_MISSED),
    ]
    return MachineTable(S.STATES, E.EVENTS, transitions, S.COUNTY_INITIAL_STATE,
                        {S.DEADLINE_MISSED, S.COUNTY_AUDIT_COMPLETE})


def _audit_board_dashboard() -> MachineTable:
    S, E = ASM.AUDIT_BOARD_STATE, ASM.AUDIT_BOARD_EVENT
    transitions = [
        ASMTransition({S.AUDIT_INITIAL_STATE, S.WAITING_FOR_ROUND_START_NO_AUDIT_BOARD},
                      E.ROUND_START_EVENT, S.ROUND_IN_PROGRESS_NO_AUDIT_BOARD),
        ASMTransition({S.AUDIT_INITIAL_STATE, S.WAITING_FOR_ROUND_START_NO_AUDIT_BOARD},
                      E.SIGN_IN_AUDIT_BOARD_EVENT, S.WAITING_FOR_ROUND_START),
        ASMTransition(S.AUDIT_INITIAL_STATE, {E.NO_CONTESTS_TO_AUDIT_EVENT, E.RISK_LIMIT_ACHIEVED_EVENT},
                      S.AUDIT_COMPLETE),
        ASMTransition(S.AUDIT_INITIAL_STATE, E.COUNTY_DEADLINE_MISSED_EVENT, S.UNABLE_TO_AUDIT),
        ASMTransition(S.WAITING_FOR_ROUND_START, E.ROUND_START_EVENT, S.ROUND_IN_PROGRESS),
        ASMTransition(S.WAITING_FOR_ROUND_START, E.SIGN_OUT_AUDIT_BOARD_EVENT,
                      S.WAITING_FOR_ROUND_START_NO_AUDIT_BOARD),
        ASMTransition(S.WAITING_FOR_ROUND_START, E.RISK_LIMIT_ACHIEVED_EVENT, S.AUDIT_COMPLETE),
        ASMTransition(S.ROUND_IN_PROGRESS,
                      {E.REPORT_MARKINGS_EVENT, E.REPORT_BALLOT_NOT_FOUND_EVENT,
                       E.SUBMIT_AUDIT_INVESTIGATION_REPORT_EVENT},
                      S.ROUND_IN_PROGRESS),
        ASMTransition(S.ROUND_IN_PROGRESS, E.SIGN_OUT_AUDIT_BOARD_EVENT, S.ROUND_IN_PROGRESS_NO_AUDIT_BOARD),
        ASMTransition(S.ROUND_IN_PROGRESS, E.ROUND_COMPLETE_EVENT, S.WAITING_FOR_ROUND_SIGN_OFF),
        ASMTransition(S.AUDIT_INITIAL_STATE, E.ROUND_COMPLETE_EVENT, S.WAITING_FOR_ROUND_SIGN_OFF),
        ASMTransition(S.WAITING_FOR_ROUND_START, E.ROUND_COMPLETE_EVENT, S.WAITING_FOR_ROUND_SIGN_OFF),
        ASMTransition(S.WAITING_FOR_ROUND_START, E.ROUND_SIGN_OFF_EVENT, S.WAITING_FOR_ROUND_START),
        ASMTransition(S.ROUND_IN_PROGRESS_NO_AUDIT_BOARD, E.SIGN_IN_AUDIT_BOARD_EVENT, S.ROUND_IN_PROGRESS),
        ASMTransition(S.WAITING_FOR_ROUND_SIGN_OFF, E.SIGN_OUT_AUDIT_BOARD_EVENT,
                      S.WAITING_FOR_ROUND_SIGN_OFF_NO_AUDIT_BOARD),
        ASMTransition(S.WAITING_FOR_ROUND_SIGN_OFF, E.ROUND_SIGN_OFF_EVENT, S.WAITING_FOR_ROUND_START),
        ASMTransition(S.WAITING_FOR_ROUND_SIGN_OFF, {E.RISK_LIMIT_ACHIEVED_EVENT, E.BALLOTS_EXHAUSTED_EVENT},
                      S.AUDIT_COMPLETE),
        ASMTransition(S.WAITING_FOR_ROUND_SIGN_OFF_NO_AUDIT_BOARD, E.SIGN_IN_AUDIT_BOARD_EVENT,
                      S.WAITING_FOR_ROUND_SIGN_OFF),
        ASMTransition({S.AUDIT_INITIAL_STATE, S.WAITING_FOR_ROUND_START,
                       S.WAITING_FOR_ROUND_START_NO_AUDIT_BOARD, S.ROUND_IN_PROGRESS,
                       S.ROUND_IN_PROGRESS_NO_AUDIT_BOARD, S.WAITING_FOR_ROUND_SIGN_OFF,
                       S.WAITING_FOR_ROUND_SIGN_OFF_NO_AUDIT_BOARD},
                      E.ABORT_AUDIT_EVENT, S.AUDIT_ABORTED),
    ]
    return MachineTable(S.STATES, E.EVENTS, transitions, S.AUDIT_INITIAL_STATE,
                        {S.AUDIT_COMPLETE, S.UNABLE_TO_AUDIT, S.AUDIT_ABORTED})


def _dos_dashboard() -> MachineTable:
    S, E = ASM.DOS_STATE, ASM.DOS_EVENT
    setup = {S.DOS_INITIAL_STATE, S.PARTIAL_AUDIT_INFO_SET, S.COMPLETE_AUDIT_INFO_SET}
    transitions = [
        ASMTransition(setup, E.PARTIAL_AUDIT_INFO_EVENT, S.PARTIAL_AUDIT_INFO_SET),
        ASMTransition(setup, E.COMPLETE_AUDIT_INFO_EVENT, S.COMPLETE_AUDIT_INFO_SET),
        ASMTransition(S.COMPLETE_AUDIT_INFO_SET, E.DOS_START_ROUND_EVENT, S.DOS_AUDIT_ONGOING),
        ASMTransition(S.DOS_AUDIT_ONGOING,
                      {E.AUDIT_EVENT, E.DOS_COUNTY_AUDIT_COMPLETE_EVENT, E.DOS_START_ROUND_EVENT},
                      S.DOS_AUDIT_ONGOING),
        ASMTransition(S.DOS_AUDIT_ONGOING, E.DOS_ROUND_COMPLETE_EVENT, S.DOS_ROUND_COMPLETE),
        ASMTransition(S.DOS_ROUND_COMPLETE, E.DOS_START_ROUND_EVENT, S.DOS_AUDIT_ONGOING),
        ASMTransition({S.DOS_AUDIT_ONGOING, S.DOS_ROUND_COMPLETE}, E.DOS_AUDIT_COMPLETE_EVENT,
                      S.DOS_AUDIT_COMPLETE),
        ASMTransition(S.DOS_AUDIT_COMPLETE, E.PUBLISH_AUDIT_REPORT_EVENT, S.AUDIT_RESULTS_PUBLISHED),
    ]
    return MachineTable(S.STATES, E.EVENTS, transitions, S.DOS_INITIAL_STATE, {S.AUDIT_RESULTS_PUBLISHED})


MACHINES = {ASM.KIND.COUNTY_DASHBOARD: _county_dashboard(),
            ASM.KIND.AUDIT_BOARD_DASHBOARD: _audit_board_dashboard(),
            ASM.KIND.DOS_DASHBOARD: _dos_dashboard()}
