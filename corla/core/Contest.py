import logging
from collections import OrderedDict

from .Audit import Audit
from .CVR import CVR

logger = logging.getLogger(__name__)

##########################################################################################
class County:
    '''
    a county: the unit that holds ballot manifests and cast vote records
    '''

    def __init__(self, id: int=None, name: str=None):
        self.id = id
        self.name = name

    def __str__(self):
        return f'County({self.id}, {self.name})'

    def __eq__(self, other):
        return isinstance(other, County) and other.id == self.id

    def __hash__(self):
        return hash(('County', self.id))


##########################################################################################
class Contest:
    '''
    one contest as it appears on the ballots of one county
    '''

    def __init__(
                 self,
                 id: object=None,
                 name: str=None,
                 county_id: int=None,
                 description: str=None,
                 choices: list=None,
                 votes_allowed: int=1,
                 winners_allowed: int=1,
                 sequence_number: int=0):
        self.id = id
        self.name = name
        self.county_id = county_id
        self.description = description
        self.choices = list(choices) if choices is not None else []
        self.votes_allowed = votes_allowed
        self.winners_allowed = winners_allowed
        self.sequence_number = sequence_number

    def __str__(self):
        return str(self.__dict__)

    @classmethod
    def from_dict(cls, d: dict=None):
        c = Contest()
        c.__dict__.update(d)
        return c


##########################################################################################
class ContestResult:
    '''
    Cross-county roll-up of one contest: reported winners and losers, vote totals, margins,
    the number of ballots cast in the counties that carry the contest, and the reason the
    contest is audited. This is the source of the winner and loser sets used to classify
    discrepancies.
    '''

    def __init__(
                 self,
                 contest_name: str=None,
                 winners_allowed: int=1,
                 winners: set=None,
                 losers: set=None,
                 counties: set=None,
                 contests: set=None,
                 vote_totals: dict=None,
                 diluted_margin=None,
                 min_margin: int=None,
                 max_margin: int=None,
                 ballot_count: int=0,
                 audit_reason: str=None):
        self.contest_name = contest_name
        self.winners_allowed = winners_allowed
        self.winners = set(winners) if winners is not None else set()
        self.losers = set(losers) if losers is not None else set()
        self.counties = set(counties) if counties is not None else set()
        self.contests = set(contests) if contests is not None else set()
        self.vote_totals = dict(vote_totals) if vote_totals is not None else {}
        self.diluted_margin = (diluted_margin if diluted_margin is not None
                               else Audit.diluted_margin(min_margin or 0, ballot_count))
        self.min_margin = min_margin
        self.max_margin = max_margin
        self.ballot_count = ballot_count
        self.audit_reason = audit_reason

    def __str__(self):
        return f'ContestResult [contest_name={self.contest_name}]'

    @classmethod
    def from_dict(cls, d: dict=None):
        return ContestResult(**d)

    def county_ids(self) -> set:
        return set(self.counties)

    def total_votes(self) -> int:
        return sum(self.vote_totals.values())

    def add_contests(self, contests):
        for c in contests:
            self.contests.add(c)
            self.counties.add(c.county_id)

    def to_dict(self) -> dict:
        return {'contest_name': self.contest_name,
                'winners_allowed': self.winners_allowed,
                'winners': sorted(self.winners),
                'losers': sorted(self.losers),
                'counties': sorted(self.counties),
                'vote_totals': dict(self.vote_totals),
                'diluted_margin': self.diluted_margin,
                'min_margin': self.min_margin,
                'max_margin': self.max_margin,
                'ballot_count': self.ballot_count,
                'audit_reason': self.audit_reason}


##########################################################################################
class CountyContestResult:
    '''
    Tally of one contest in one county, built from the county's uploaded CVRs.

    Methods:
    --------
    add_cvr: count the choices marked on one CVR
    update_results: determine county winners and losers and their margins
    ranked_choices: choices in descending order of votes
    '''

    def __init__(self, county_id: int=None, contest: Contest=None):
        self.county_id = county_id
        self.contest = contest
        self.winners_allowed = contest.winners_allowed if contest is not None else 1
        self.vote_totals = OrderedDict((ch, 0) for ch in (contest.choices if contest is not None else []))
        self.winners = set()
        self.losers = set()
        self.min_margin = None
        self.max_margin = None
        self.county_ballot_count = 0
        self.contest_ballot_count = 0

    def __str__(self):
        return f'CountyContestResult [county_id={self.county_id}, contest={self.contest.name}]'

    @property
    def contest_name(self) -> str:
        return self.contest.name

    def add_cvr(self, cvr: CVR):
        ci = cvr.contest_info_for(self.contest.name)
        if ci is not None:
            for choice in ci.choices:
                self.vote_totals[choice] = self.vote_totals.get(choice, 0) + 1
            self.contest_ballot_count += 1
        self.county_ballot_count += 1

    def ranked_choices(self) -> list:
        return [choice for choice, _ in ContestCounter.rank_totals(self.vote_totals)]

    def update_results(self):
        '''
        Split the choices into winners and losers by vote total. Ties at the last winning
        place are broken by the order in which the choices appear on the ballot.

        Side effects
        ------------
        sets winners, losers, min_margin, max_margin
        '''
        ranked = self.ranked_choices()
        self.winners = set(ranked[:self.winners_allowed])
        self.losers = set(ranked[self.winners_allowed:])
        margins = ContestCounter.pairwise_margins(self.winners, self.losers, self.vote_totals)
        self.min_margin = min(margins)
        self.max_margin = max(margins)

    def pairwise_margin(self, first: str, second: str):
        if first not in self.vote_totals or second not in self.vote_totals:
            return None
        return self.vote_totals[first] - self.vote_totals[second]

    def margin_to_nearest_loser(self, choice: str):
        ranked = self.ranked_choices()
        if choice not in ranked:
            return None
        for other in ranked[ranked.index(choice) + 1:]:
            if other in self.losers:
                return self.vote_totals[choice] - self.vote_totals[other]
        return None

    def county_diluted_margin(self):
        if self.county_ballot_count <= 0:
            raise ValueError('attempted to calculate diluted margin with no ballots')
        if not self.losers:
            return Audit.as_decimal(1)
        return Audit.diluted_margin(self.min_margin, self.county_ballot_count)

    def contest_diluted_margin(self):
        if self.contest_ballot_count <= 0:
            raise ValueError('attempted to calculate diluted margin with no ballots')
        if not self.losers:
            return Audit.as_decimal(1)
        return Audit.diluted_margin(self.min_margin, self.contest_ballot_count)


##########################################################################################
class ContestCounter:
    '''
    Roll county tallies up into contest-wide results.
    '''

    @classmethod
    def count_all_contests(cls, county_contest_results: list, reasons: dict, manifest) -> list:
        '''
        Group county tallies by contest name and count each contest that has an audit reason.

        Parameters
        ----------
        county_contest_results: list of CountyContestResult
        reasons: dict
            audit reason, keyed by contest name
        manifest: object with total_ballots(county_ids)
            ballot manifest lookup

        Returns
        -------
        list of ContestResult
        '''
        by_name = OrderedDict()
        for ccr in county_contest_results:
            by_name.setdefault(ccr.contest_name, []).append(ccr)
        return [cls.count_contest(name, ccrs, reasons[name], manifest)
                for name, ccrs in by_name.items() if name in reasons]

    @classmethod
    def count_contest(cls, contest_name: str, county_contest_results: list, reason: str, manifest) -> ContestResult:
        vote_totals = cls.accumulate_vote_totals([ccr.vote_totals for ccr in county_contest_results])
        winners_allowed = {ccr.winners_allowed for ccr in county_contest_results}
        if not winners_allowed:
            logger.error(f'count_contest: {contest_name} does not have any winners allowed; assuming 1')
            n_winners = 1
        else:
            if len(winners_allowed) > 1:
                logger.error(f'count_contest: county results for {contest_name} contain different '
                             f'numbers of winners allowed: {sorted(winners_allowed)}')
            n_winners = max(winners_allowed)
        county_ids = {ccr.county_id for ccr in county_contest_results}
        ballot_count = manifest.total_ballots(county_ids)
        if ballot_count == 0:
            logger.error(f'count_contest: {contest_name} has no ballot manifests for county ids {sorted(county_ids)}')
        winners = cls.winners(vote_totals, n_winners)
        losers = cls.losers(vote_totals, winners)
        margins = cls.pairwise_margins(winners, losers, vote_totals)
        min_margin = min(margins)
        max_margin = max(margins)
        return ContestResult(contest_name=contest_name,
                             winners_allowed=n_winners,
                             winners=winners,
                             losers=losers,
                             counties=county_ids,
                             contests={ccr.contest for ccr in county_contest_results},
                             vote_totals=vote_totals,
                             diluted_margin=Audit.diluted_margin(min_margin, ballot_count),
                             min_margin=min_margin,
                             max_margin=max_margin,
                             ballot_count=ballot_count,
                             audit_reason=reason)

    @staticmethod
    def accumulate_vote_totals(vote_totals: list) -> dict:
        acc = OrderedDict()
        for votes in vote_totals:
            for choice, n in votes.items():
                acc[choice] = acc.get(choice, 0) + n
        return acc

    @staticmethod
    def rank_totals(vote_totals: dict) -> list:
        '''
        (choice, votes) pairs in descending order of votes; ties keep their input order
        '''
        return sorted(vote_totals.items(), key=lambda kv: -kv[1])

    @classmethod
    def winners(cls, vote_totals: dict, winners_allowed: int=1) -> set:
        return {choice for choice, _ in cls.rank_totals(vote_totals)[:winners_allowed]}

    @staticmethod
    def losers(vote_totals: dict, winners: set) -> set:
        return set(vote_totals) - set(winners)

    @staticmethod
    def pairwise_margins(winners: set, losers: set, vote_totals: dict) -> set:
        '''
        margins of every winner over every loser; {0} when there are no losers
        '''
        if not losers:
            return {0}
        return {vote_totals[w] - vote_totals[l] for w in winners for l in losers}
