import numpy as np
from decimal import Decimal, localcontext, ROUND_CEILING, ROUND_HALF_UP

##########################################################################################
class Audit:
    '''
    Constants that describe why and how contests are audited, and the arithmetic of the
    "super-simple" ballot-level comparison audit (Stark, 2010).

    All statistics are computed with base-10 arithmetic carried to DECIMAL_PRECISION
    significant digits.
    '''

    GAMMA = Decimal('1.03905')
    DECIMAL_PRECISION = 34

    class AUDIT_STATUS:
        '''
        status of a comparison audit of one contest
        '''
        AUDIT_STATUSES = (NOT_STARTED:= 'NOT_STARTED',
                          IN_PROGRESS:= 'IN_PROGRESS',
                          RISK_LIMIT_ACHIEVED:= 'RISK_LIMIT_ACHIEVED',
                          ENDED:= 'ENDED',
                          NOT_AUDITABLE:= 'NOT_AUDITABLE',
                          HAND_COUNT:= 'HAND_COUNT'
                         )
        TERMINAL = (ENDED, NOT_AUDITABLE, HAND_COUNT)
        FINISHED = (NOT_AUDITABLE, RISK_LIMIT_ACHIEVED, HAND_COUNT, ENDED)

    class AUDIT_SELECTION:
        '''
        whether the outcome of a contest is being confirmed, or the contest is audited
        only opportunistically
        '''
        AUDIT_SELECTIONS = (AUDITED_CONTEST:= 'AUDITED_CONTEST',
                            UNAUDITED_CONTEST:= 'UNAUDITED_CONTEST'
                           )

    class AUDIT_REASON:
        '''
        reasons a contest can be selected for audit
        '''
        AUDIT_REASONS = (STATE_WIDE_CONTEST:= 'STATE_WIDE_CONTEST',
                         COUNTY_WIDE_CONTEST:= 'COUNTY_WIDE_CONTEST',
                         CLOSE_CONTEST:= 'CLOSE_CONTEST',
                         TIED_CONTEST:= 'TIED_CONTEST',
                         CONCERN_REGARDING_ACCURACY:= 'CONCERN_REGARDING_ACCURACY',
                         OPPORTUNISTIC_BENEFITS:= 'OPPORTUNISTIC_BENEFITS',
                         COUNTY_CLERK_ABILITY:= 'COUNTY_CLERK_ABILITY'
                        )

        @classmethod
        def selection(cls, reason: str) -> str:
            if reason not in cls.AUDIT_REASONS:
                raise ValueError(f'unknown audit reason {reason}')
            if reason in (cls.TIED_CONTEST, cls.OPPORTUNISTIC_BENEFITS):
                return Audit.AUDIT_SELECTION.UNAUDITED_CONTEST
            return Audit.AUDIT_SELECTION.AUDITED_CONTEST

        @classmethod
        def is_targeted(cls, reason: str) -> bool:
            return cls.selection(reason) == Audit.AUDIT_SELECTION.AUDITED_CONTEST

    class AUDIT_TYPE:
        '''
        how a contest is audited
        '''
        AUDIT_TYPES = (COMPARISON:= 'COMPARISON',
                       HAND_COUNT:= 'HAND_COUNT',
                       NOT_AUDITABLE:= 'NOT_AUDITABLE',
                       NONE:= 'NONE'
                      )

    @classmethod
    def as_decimal(cls, x) -> Decimal:
        '''
        exact decimal value of x; floats are read through their shortest repr so that
        0.05 means 5/100, not the nearest binary fraction
        '''
        if isinstance(x, Decimal):
            return x
        if isinstance(x, (float, np.floating)):
            return Decimal(repr(float(x)))
        return Decimal(int(x))

    @classmethod
    def diluted_margin(cls, margin: int, ballot_count: int) -> Decimal:
        '''
        smallest reported margin divided by the number of ballots cast; 0 if either is 0
        '''
        if margin == 0 or ballot_count == 0:
            return Decimal(0)
        with localcontext() as ctx:
            ctx.prec = cls.DECIMAL_PRECISION
            return cls.as_decimal(margin) / cls.as_decimal(ballot_count)

    @classmethod
    def total_error_bound(cls, diluted_margin, gamma=GAMMA) -> Decimal:
        '''
        U = 2 gamma / diluted margin; infinite if the diluted margin is 0
        '''
        dm = cls.as_decimal(diluted_margin)
        if dm == 0:
            return Decimal('Infinity')
        with localcontext() as ctx:
            ctx.prec = cls.DECIMAL_PRECISION
            return 2 * cls.as_decimal(gamma) / dm

    @classmethod
    def optimistic(cls, risk_limit, diluted_margin, gamma=GAMMA, two_under: int=0,
                   one_under: int=0, one_over: int=0, two_over: int=0) -> int:
        '''
        Number of ballots to audit if no further discrepancies are found.

        Parameters
        ----------
        risk_limit: Decimal or float
            the risk limit, in (0, 1)
        diluted_margin: Decimal or float
            smallest margin divided by ballots cast
        gamma: Decimal or float
            error inflation factor
        two_under, one_under, one_over, two_over: int
            discrepancies observed so far

        Returns
        -------
        int
            0 if the diluted margin is 0; otherwise the sample size, never fewer than the
            number of discrepancies already observed
        '''
        dm = cls.as_decimal(diluted_margin)
        if dm == 0:
            return 0
        with localcontext() as ctx:
            ctx.prec = cls.DECIMAL_PRECISION
            g = cls.as_decimal(gamma)
            one = Decimal(1)
            two_under_term = two_under * (one + one / g).ln()
            one_under_term = one_under * (one + one / (2 * g)).ln()
            one_over_term = one_over * (one - one / (2 * g)).ln()
            two_over_term = two_over * (one - one / g).ln()
            numerator = -2 * g * (cls.as_decimal(risk_limit).ln() + two_under_term + one_under_term
                                  + one_over_term + two_over_term)
            ceiling = int((numerator / dm).to_integral_value(rounding=ROUND_CEILING))
        return max(ceiling, two_under + one_under + one_over + two_over)

    @classmethod
    def p_value_approximation(cls, audited_ballots: int, diluted_margin, gamma=GAMMA,
                              one_under: int=0, two_under: int=0, one_over: int=0,
                              two_over: int=0) -> Decimal:
        '''
        Kaplan-Markov approximation of the P-value of the comparison audit.

        Parameters
        ----------
        audited_ballots: int
            number of ballots examined, counting multiplicity
        diluted_margin: Decimal or float
            smallest margin divided by ballots cast
        gamma: Decimal or float
            error inflation factor
        one_under, two_under, one_over, two_over: int
            discrepancies observed so far

        Returns
        -------
        Decimal
            the P-value, capped at 1; 1 if the diluted margin is 0
        '''
        if cls.as_decimal(diluted_margin) == 0:
            return Decimal(1)
        with localcontext() as ctx:
            ctx.prec = cls.DECIMAL_PRECISION
            g = cls.as_decimal(gamma)
            one = Decimal(1)
            u = cls.total_error_bound(diluted_margin, g)
            p = ((one - one / u) ** int(audited_ballots)
                 * (one - one / (2 * g)) ** (-one_over)
                 * (one - one / g) ** (-two_over)
                 * (one + one / (2 * g)) ** (-one_under)
                 * (one + one / g) ** (-two_under))
            return min(one, p)

    @classmethod
    def round_risk(cls, p: Decimal, places: int=3) -> Decimal:
        '''
        round a P-value half-up to `places` decimal places for reporting
        '''
        return p.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


##########################################################################################
class SelectionCounter:
    '''
    Count of discrepancies or disagreements, kept separately for contests whose outcome is
    being confirmed (AUDITED_CONTEST) and for contests audited opportunistically
    (UNAUDITED_CONTEST).
    '''

    def __init__(self, audited_contest: int=0, unaudited_contest: int=0):
        self.audited_contest = audited_contest
        self.unaudited_contest = unaudited_contest

    def __str__(self):
        return str(self.to_dict())

    def __eq__(self, other):
        return (isinstance(other, SelectionCounter)
                and self.audited_contest == other.audited_contest
                and self.unaudited_contest == other.unaudited_contest)

    @staticmethod
    def _attribute(selection: str) -> str:
        if selection == Audit.AUDIT_SELECTION.AUDITED_CONTEST:
            return 'audited_contest'
        if selection == Audit.AUDIT_SELECTION.UNAUDITED_CONTEST:
            return 'unaudited_contest'
        raise ValueError(f'unknown audit selection {selection}')

    @staticmethod
    def selections(reasons) -> set:
        '''
        distinct selections for a collection of audit reasons
        '''
        return {Audit.AUDIT_REASON.selection(r) for r in reasons}

    def get(self, selection: str) -> int:
        return getattr(self, self._attribute(selection))

    def increment(self, selection: str, by: int=1):
        attr = self._attribute(selection)
        setattr(self, attr, getattr(self, attr) + by)

    def add(self, reasons):
        '''
        count one for each distinct selection among `reasons`
        '''
        for s in self.selections(reasons):
            self.increment(s)

    def remove(self, reasons):
        for s in self.selections(reasons):
            self.increment(s, -1)

    def total(self) -> int:
        return self.audited_contest + self.unaudited_contest

    def to_dict(self) -> dict:
        return {Audit.AUDIT_SELECTION.AUDITED_CONTEST: self.audited_contest,
                Audit.AUDIT_SELECTION.UNAUDITED_CONTEST: self.unaudited_contest}
