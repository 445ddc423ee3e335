# fixtures to configure unit tests

import sys
import pytest

from corla.core.ASM import ASM
from corla.core.Audit import Audit
from corla.core.BallotSelection import BallotManifestInfo
from corla.core.CVR import CVR, CVRContestInfo
from corla.core.ComparisonAudit import ComparisonAudit
from corla.core.Contest import County, Contest, ContestResult
from corla.core.Dashboard import AuditInfo, ContestToAudit, CountyDashboard, DoSDashboard
from corla.core.Persistence import CVRLookup, ManifestLookup, Store

SEED = '01234567890123456789'

@pytest.fixture
def seed():
    return SEED

@pytest.fixture
def counties():
    return [County(1, 'Adams'), County(2, 'Boulder')]

@pytest.fixture
def contests():
    # Governor is on every ballot in both counties; Mayor only in Adams
    return [Contest(id=1, name='Governor', county_id=1, choices=['Alice', 'Bob']),
            Contest(id=2, name='Mayor', county_id=1, choices=['Carol', 'Dave']),
            Contest(id=3, name='Governor', county_id=2, choices=['Alice', 'Bob'])]

@pytest.fixture
def manifest_segments():
    return [BallotManifestInfo(1, 1, '1', 5, 'Bin 1', 1, 5),
            BallotManifestInfo(1, 1, '2', 5, 'Bin 2', 6, 10),
            BallotManifestInfo(2, 1, '1', 10, 'Shelf A', 1, 10)]

@pytest.fixture
def manifest(manifest_segments):
    return ManifestLookup(manifest_segments)

def make_cvr(cvr_id, county_id, batch_id, record_id, votes, record_type=CVR.RECORD_TYPE.UPLOADED):
    return CVR.from_dict({'id': cvr_id,
                          'record_type': record_type,
                          'county_id': county_id,
                          'cvr_number': cvr_id,
                          'scanner_id': 1,
                          'batch_id': batch_id,
                          'record_id': record_id,
                          'imprinted_id': f'1-{batch_id}-{record_id}',
                          'ballot_type': 'BT-1',
                          'contest_info': votes})

@pytest.fixture
def cvr_list():
    '''
    Adams: ids 1-10, batches '1' and '2'; Boulder: ids 11-20, batch '1'.
    Governor: Alice 15, Bob 5. Mayor: Carol 7, Dave 3.
    '''
    cvrs = []
    for i in range(1, 11):
        batch, record = ('1', i) if i <= 5 else ('2', i - 5)
        governor = ['Alice'] if i <= 7 else ['Bob']
        mayor = ['Carol'] if i <= 7 else ['Dave']
        cvrs.append(make_cvr(i, 1, batch, record, {'Governor': governor, 'Mayor': mayor}))
    for i in range(11, 21):
        governor = ['Alice'] if i <= 18 else ['Bob']
        cvrs.append(make_cvr(i, 2, '1', i - 10, {'Governor': governor}))
    return cvrs

@pytest.fixture
def cvr_lookup(cvr_list):
    return CVRLookup(cvr_list)

@pytest.fixture
def store():
    return Store()

@pytest.fixture
def governor_result(contests):
    return ContestResult(contest_name='Governor',
                         winners_allowed=1,
                         winners={'Alice'},
                         losers={'Bob'},
                         counties={1, 2},
                         contests={contests[0], contests[2]},
                         vote_totals={'Alice': 15, 'Bob': 5},
                         min_margin=10,
                         max_margin=10,
                         ballot_count=20,
                         audit_reason=Audit.AUDIT_REASON.STATE_WIDE_CONTEST)

@pytest.fixture
def governor_audit(governor_result):
    return ComparisonAudit(governor_result, 0.05)

@pytest.fixture
def audit_info(seed):
    return AuditInfo.from_dict({'election_type': 'general',
                                'election_date': '2026-11-03',
                                'public_meeting_date': '2026-11-10',
                                'seed': seed,
                                'risk_limit': 0.05})

@pytest.fixture
def dos_dashboard(contests, store, audit_info):
    dos = DoSDashboard()
    dos.update_audit_info(audit_info, store.asm)
    reasons = [Audit.AUDIT_REASON.STATE_WIDE_CONTEST, Audit.AUDIT_REASON.COUNTY_WIDE_CONTEST,
               Audit.AUDIT_REASON.STATE_WIDE_CONTEST]
    for contest, reason in zip(contests, reasons):
        dos.update_contest_to_audit(ContestToAudit(contest, reason, Audit.AUDIT_TYPE.COMPARISON))
    return dos

@pytest.fixture
def county_dashboards(counties, store):
    '''
    a dashboard per county, saved, with its ballot manifest and CVRs imported
    '''
    cdbs = []
    for county in counties:
        cdb = store.save(CountyDashboard(county.id, county.name))
        for event in (ASM.COUNTY_EVENT.IMPORT_BALLOT_MANIFEST_EVENT, ASM.COUNTY_EVENT.IMPORT_CVRS_EVENT,
                      ASM.COUNTY_EVENT.CVR_IMPORT_SUCCESS_EVENT):
            store.asm.step(ASM.KIND.COUNTY_DASHBOARD, cdb.identity, event)
        cdbs.append(cdb)
    return cdbs

def acvr_for(cvr, choices=None, consensus=CVRContestInfo.CONSENSUS.YES):
    '''
    an audit CVR for `cvr`; `choices` overrides the markings by contest name
    '''
    choices = choices or {}
    info = [CVRContestInfo(ci.contest, None, consensus, choices.get(ci.contest, ci.choices))
            for ci in cvr.contest_info]
    return CVR(id=f'acvr-{cvr.id}',
               record_type=CVR.RECORD_TYPE.AUDITOR_ENTERED,
               county_id=cvr.county_id,
               cvr_number=cvr.cvr_number,
               scanner_id=cvr.scanner_id,
               batch_id=cvr.batch_id,
               record_id=cvr.record_id,
               imprinted_id=cvr.imprinted_id,
               ballot_type=cvr.ballot_type,
               contest_info=info)

@pytest.fixture
def make_acvr():
    return acvr_for
