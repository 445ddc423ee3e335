import logging
from collections import OrderedDict

from .CVR import CVRAuditInfo, natural_key
from .PRNG import PseudoRandomNumberGenerator

logger = logging.getLogger(__name__)

##########################################################################################
class MissingBallotManifestException(Exception):
    '''
    no ballot manifest segment covers a drawn number: the manifests do not cover the
    declared number of ballots
    '''


##########################################################################################
class BallotManifestInfo:
    '''
    One batch of physical ballots in a county's ballot manifest.

    `sequence_start` and `sequence_end` number the batch's ballots within the county.
    `ultimate_sequence_start` and `ultimate_sequence_end` place the batch in the virtual
    address space made by concatenating the manifests of every county in a contest; they
    are set by BallotSelection.project_ultimate_sequence.
    '''

    def __init__(
                 self,
                 county_id: int=None,
                 scanner_id: int=None,
                 batch_id: str=None,
                 batch_size: int=None,
                 storage_location: str=None,
                 sequence_start: int=None,
                 sequence_end: int=None):
        self.county_id = county_id
        self.scanner_id = scanner_id
        self.batch_id = str(batch_id) if batch_id is not None else None
        self.batch_size = batch_size
        self.storage_location = storage_location
        self.sequence_start = sequence_start
        self.sequence_end = sequence_end
        self.ultimate_sequence_start = None
        self.ultimate_sequence_end = None

    def __str__(self):
        return (f'BallotManifestInfo({self.uri()}, sequence=[{self.sequence_start}, {self.sequence_end}], '
                f'ultimate=[{self.ultimate_sequence_start}, {self.ultimate_sequence_end}], '
                f'location={self.storage_location})')

    __repr__ = __str__

    @classmethod
    def from_dict(cls, d: dict=None):
        return BallotManifestInfo(**d)

    def uri(self) -> str:
        return f'bmi:{self.county_id}:{self.scanner_id}-{self.batch_id}'

    def sort_key(self) -> tuple:
        return (self.county_id, self.sequence_start, self.scanner_id, natural_key(self.batch_id))

    def range_size(self) -> int:
        return self.sequence_end - self.sequence_start

    def set_ultimate(self, start: int):
        self.ultimate_sequence_start = start
        self.ultimate_sequence_end = start + self.range_size()

    def is_holding(self, rand: int) -> bool:
        return self.ultimate_sequence_start <= rand <= self.ultimate_sequence_end

    def translate_rand(self, rand: int) -> int:
        '''
        1-based position, within this batch, of the ballot at virtual position `rand`
        '''
        return rand - self.ultimate_sequence_start + 1

    def ballot_position(self, sequence_position: int) -> int:
        '''
        1-based position, within this batch, of the ballot at county sequence position
        `sequence_position`
        '''
        return sequence_position - self.sequence_start + 1

    def imprinted_id(self, position: int) -> str:
        return f'{self.scanner_id}-{self.batch_id}-{position}'


##########################################################################################
class Tribute:
    '''
    A ballot chosen by the sampler but not yet matched to a cast vote record.
    `rand_sequence_position` is the index of the draw, which preserves draw order.
    '''

    def __init__(
                 self,
                 county_id: int=None,
                 scanner_id: int=None,
                 batch_id: str=None,
                 ballot_position: int=None,
                 rand: int=None,
                 rand_sequence_position: int=None,
                 contest_name: str=None):
        self.county_id = county_id
        self.scanner_id = scanner_id
        self.batch_id = str(batch_id) if batch_id is not None else None
        self.ballot_position = ballot_position
        self.rand = rand
        self.rand_sequence_position = rand_sequence_position
        self.contest_name = contest_name

    def __str__(self):
        return f'Tribute({self.uri()}, rand={self.rand}, position={self.rand_sequence_position})'

    __repr__ = __str__

    def uri(self) -> str:
        return f'cvr:{self.county_id}:{self.scanner_id}-{self.batch_id}-{self.ballot_position}'


##########################################################################################
class Segment:
    '''
    the part of a contest's selection that falls in one county
    '''

    def __init__(self):
        self.cvrs = []
        self.cvr_ids = []
        self.tributes = []

    def __str__(self):
        return f'[Segment audit_sequence={self.cvr_ids} tributes={self.tributes}]'

    def add_tribute(self, bmi: BallotManifestInfo, ballot_position: int, rand: int,
                    rand_sequence_position: int, contest_name: str):
        self.tributes.append(Tribute(bmi.county_id, bmi.scanner_id, bmi.batch_id, ballot_position,
                                     rand, rand_sequence_position, contest_name))

    def add_cvrs(self, cvrs):
        self.cvrs.extend(cvrs)

    def add_cvr_ids(self, cvr_ids):
        self.cvr_ids.extend(cvr_ids)

    def audit_sequence(self) -> list:
        '''
        CVR ids in draw order, with repeats
        '''
        return self.cvr_ids

    def cvrs_in_ballot_sequence(self, manifest) -> list:
        return BallotSequencer.sort_and_deduplicate(self.cvrs, manifest)


##########################################################################################
class Selection:
    '''
    The ballots drawn for one contest in one round: the generated numbers and, for every
    county in the contest, the segment of tributes and CVRs that fall in that county.
    '''

    def __init__(self, contest_result=None, domain_size: int=0):
        self.contest_result = contest_result
        self.contest_name = contest_result.contest_name if contest_result is not None else None
        self.domain_size = domain_size
        self.generated_numbers = []
        self.segments = OrderedDict()

    def __str__(self):
        return (f'[Selection contest_name={self.contest_name} generated_numbers={self.generated_numbers} '
                f'domain_size={self.domain_size}]')

    def init_county(self, county_id):
        if county_id not in self.segments:
            self.segments[county_id] = Segment()

    def for_county(self, county_id):
        return self.segments.get(county_id)

    def all_segments(self) -> list:
        return list(self.segments.values())

    def all_tributes(self) -> list:
        return [t for s in self.segments.values() for t in s.tributes]

    def add_ballot_position(self, bmi: BallotManifestInfo, ballot_position: int, rand: int,
                            rand_sequence_position: int):
        self.for_county(bmi.county_id).add_tribute(bmi, ballot_position, rand,
                                                   rand_sequence_position, self.contest_name)

    def contest_cvr_ids(self) -> list:
        '''
        CVR ids drawn for the contest across all its counties, in draw order, with repeats
        '''
        drawn = []
        for county_id in self.contest_result.county_ids():
            segment = self.for_county(county_id)
            if segment is not None:
                # resolved ids line up with the segment's tributes
                drawn.extend(zip((t.rand_sequence_position for t in segment.tributes), segment.cvr_ids))
        return [cvr_id for _, cvr_id in sorted(drawn, key=lambda x: x[0])]


##########################################################################################
class BallotSelection:
    '''
    Draw ballots for a contest and locate them in the counties' ballot manifests.
    '''

    @staticmethod
    def project_ultimate_sequence(bmis) -> list:
        '''
        Lay the manifest segments end to end in one virtual address space starting at 1.

        Segments are put in a total order first, by county id, then county sequence start,
        then scanner and batch, so that the same manifests always give the same space.

        Parameters
        ----------
        bmis: iterable of BallotManifestInfo

        Returns
        -------
        list of BallotManifestInfo in canonical order

        Side effects
        ------------
        sets ultimate_sequence_start and ultimate_sequence_end on every segment
        '''
        ordered = sorted(bmis, key=BallotManifestInfo.sort_key)
        last = 0
        for bmi in ordered:
            bmi.set_ultimate(last + 1)
            last = bmi.ultimate_sequence_end
        return ordered

    @staticmethod
    def select_segment(rand: int, bmis) -> BallotManifestInfo:
        for bmi in bmis:
            if bmi.ultimate_sequence_start is not None and bmi.is_holding(rand):
                return bmi
        raise MissingBallotManifestException(
            f'could not find a ballot manifest segment holding random number {rand}')

    @classmethod
    def select_tributes(cls, selection: Selection, county_ids, bmis):
        '''
        Turn the generated numbers of `selection` into tributes in the counties' segments.
        '''
        for county_id in sorted(county_ids):
            selection.init_county(county_id)
        projected = cls.project_ultimate_sequence(bmis)
        for i, rand in enumerate(selection.generated_numbers):
            bmi = cls.select_segment(rand, projected)
            selection.add_ballot_position(bmi, bmi.translate_rand(rand), rand, i)

    @staticmethod
    def resolve_selection(selection: Selection, cvr_lookup) -> Selection:
        '''
        match the tributes of every segment to cast vote records; tributes with no record
        become phantom records
        '''
        for segment in selection.segments.values():
            cvrs = cvr_lookup.at_tribute_positions(segment.tributes)
            segment.add_cvrs(cvrs)
            segment.add_cvr_ids([c.id for c in cvrs])
        logger.debug(f'resolve_selection: {selection}')
        return selection

    @classmethod
    def random_selection(cls, contest_result, seed: str, start_index: int, end_index: int,
                         manifest, cvr_lookup) -> Selection:
        '''
        Draw the ballots with indices [start_index, end_index) for a contest.

        Draws are with replacement over 1..ballot_count, so a later round extends the
        sequence of an earlier one and never redraws it.

        Parameters
        ----------
        contest_result: ContestResult
        seed: str
            the public random seed
        start_index: int
            first draw index, counting from 0
        end_index: int
            one past the last draw index
        manifest: ManifestLookup
            source of the counties' manifest segments
        cvr_lookup: CVRLookup
            source of cast vote records

        Returns
        -------
        Selection
        '''
        domain_size = contest_result.ballot_count
        selection = Selection(contest_result, domain_size)
        if end_index > start_index:
            gen = PseudoRandomNumberGenerator(seed, True, 1, domain_size)
            selection.generated_numbers = gen.get_random_numbers(start_index, end_index - 1)
        county_ids = contest_result.county_ids()
        cls.select_tributes(selection, county_ids, manifest.segments_matching(county_ids))
        return cls.resolve_selection(selection, cvr_lookup)

    @staticmethod
    def combine_segments(segments) -> Segment:
        combined = Segment()
        for s in segments:
            if s is None:
                continue
            combined.add_cvr_ids(s.cvr_ids)
            combined.add_cvrs(s.cvrs)
        return combined

    @staticmethod
    def audited_prefix_length(cvr_ids: list, store) -> int:
        '''
        number of leading ids in `cvr_ids` whose ballots have already been audited
        '''
        n = 0
        for cvr_id in cvr_ids:
            info = store.get(cvr_id, CVRAuditInfo)
            if info is None or info.acvr is None:
                break
            n += 1
        return n


##########################################################################################
class BallotSequencer:
    '''
    Order the ballots of a round the way audit boards retrieve them.
    '''

    @staticmethod
    def sort_and_deduplicate(cvrs: list, manifest) -> list:
        '''
        Remove repeated CVRs and sort the rest by storage location, scanner, batch and record.
        A CVR whose batch has no manifest is logged and dropped.

        Parameters
        ----------
        cvrs: list of CVR
        manifest: ManifestLookup
            supplies storage locations

        Returns
        -------
        list of CVR
        '''
        unique = OrderedDict()
        for cvr in cvrs:
            unique.setdefault(cvr.id, cvr)
        located = []
        for cvr in unique.values():
            location = manifest.location_for(cvr)
            if location is None:
                logger.error(f'could not find a ballot manifest for cvr: {cvr.uri()}')
                continue
            located.append((natural_key(location), cvr.sort_key(), cvr))
        located.sort(key=lambda x: (x[0], x[1]))
        return [cvr for _, _, cvr in located]
