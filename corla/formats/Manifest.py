"""
Tools to read Colorado ballot manifests
"""

import logging

import numpy as np
import pandas as pd

from corla.core.BallotSelection import BallotManifestInfo

logger = logging.getLogger(__name__)


class Manifest:

    # column positions in a Colorado ballot manifest; column 0 is the county name
    SCANNER_ID_COLUMN = 1
    BATCH_NUMBER_COLUMN = 2
    NUM_BALLOTS_COLUMN = 3
    BATCH_LOCATION_COLUMN = 4

    @classmethod
    def read_colorado(cls, source, county_id: int) -> list:
        """
        Read a Colorado ballot manifest CSV: a header row, then one row per batch with the
        columns county, scanner, batch, number of ballots and storage location.

        Batches are numbered consecutively within the county in the order listed: the
        first ballot of the first batch is 1, and each batch starts one past the end of
        the previous one.

        Parameters:
        ----------
        source: str, path or file-like
            the CSV
        county_id: int
            the county the manifest belongs to

        Returns:
        --------
        list of BallotManifestInfo
        """
        df = pd.read_csv(source, dtype=str, keep_default_na=False, skip_blank_lines=True)
        return cls.from_dataframe(df, county_id)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, county_id: int) -> list:
        """
        Ballot manifest segments from a manifest already read into a dataframe whose
        columns are in Colorado order.
        """
        assert df.shape[1] > cls.BATCH_LOCATION_COLUMN, \
            f"manifest has {df.shape[1]} columns; expected at least {cls.BATCH_LOCATION_COLUMN + 1}"
        segments = []
        last = 0
        for row_num, row in enumerate(df.itertuples(index=False), start=1):
            try:
                batch_size = int(row[cls.NUM_BALLOTS_COLUMN])
                scanner_id = int(row[cls.SCANNER_ID_COLUMN])
            except ValueError as e:
                raise ValueError(f"malformed ballot manifest row {row_num}: {list(row)}") from e
            if batch_size < 0:
                raise ValueError(f"negative batch size in ballot manifest row {row_num}: {list(row)}")
            bmi = BallotManifestInfo(county_id=county_id,
                                     scanner_id=scanner_id,
                                     batch_id=str(row[cls.BATCH_NUMBER_COLUMN]).strip(),
                                     batch_size=batch_size,
                                     storage_location=str(row[cls.BATCH_LOCATION_COLUMN]).strip(),
                                     sequence_start=last + 1,
                                     sequence_end=last + batch_size)
            logger.debug(f"parsed ballot manifest: {bmi}")
            segments.append(bmi)
            last = bmi.sequence_end
        return segments

    @classmethod
    def ballot_count(cls, segments) -> int:
        """
        total number of ballots in the segments
        """
        return int(np.sum([s.batch_size for s in segments])) if segments else 0
