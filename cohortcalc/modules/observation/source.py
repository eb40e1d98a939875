"""
Read-only observation sources.

The core only asks one kind of question: "all observations of concept C for
subjects S, as of date D". Backends implement ``_fetch``; the base class
answers empty cohorts without touching the backend, applies the as-of cutoff,
validates the response and sorts it chronologically per subject with a stable
sort, so observations sharing a timestamp keep the backend's order.
"""

import logging
import threading
from abc import ABC, abstractmethod
from os.path import exists
from typing import Iterable, List, Optional

import pandas as pd

from cohortcalc.constants.data import (
    CONCEPT_COL,
    OBSERVATION_COLUMNS,
    PID_COL,
    REQUIRED_OBSERVATION_COLUMNS,
    TEXT_VALUE_COL,
    TIMESTAMP_COL,
    VALUE_COL,
)
from cohortcalc.errors import DataAccessError
from cohortcalc.functional.calculation.window import end_of_period, sort_observations

logger = logging.getLogger(__name__)


def empty_observations() -> pd.DataFrame:
    return pd.DataFrame(
        {
            PID_COL: pd.Series([], dtype=object),
            CONCEPT_COL: pd.Series([], dtype=object),
            TIMESTAMP_COL: pd.Series([], dtype="datetime64[ns]"),
            VALUE_COL: pd.Series([], dtype=float),
            TEXT_VALUE_COL: pd.Series([], dtype=object),
        }
    )


def normalize_observations(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Validate a backend response and bring it to the standard columns.

    Raises:
        DataAccessError: if required columns are missing or times cannot be parsed.
    """
    if not isinstance(frame, pd.DataFrame):
        raise DataAccessError(
            f"Observation source returned {type(frame).__name__}, expected a DataFrame."
        )
    missing = [c for c in REQUIRED_OBSERVATION_COLUMNS if c not in frame.columns]
    if missing:
        raise DataAccessError(f"Observation source response misses columns: {missing}")
    frame = frame.copy()
    try:
        frame[TIMESTAMP_COL] = pd.to_datetime(frame[TIMESTAMP_COL])
    except (TypeError, ValueError) as e:
        raise DataAccessError("Observation source returned unparseable times.") from e
    if frame[TIMESTAMP_COL].dt.tz is not None:
        frame[TIMESTAMP_COL] = frame[TIMESTAMP_COL].dt.tz_localize(None)
    if VALUE_COL not in frame.columns:
        frame[VALUE_COL] = float("nan")
    else:
        frame[VALUE_COL] = pd.to_numeric(frame[VALUE_COL], errors="coerce")
    if TEXT_VALUE_COL not in frame.columns:
        frame[TEXT_VALUE_COL] = None
    return frame[OBSERVATION_COLUMNS]


class ObservationSource(ABC):
    """Interface to the external clinical data store."""

    def fetch_all(
        self, concept_id: str, entity_ids: Iterable, as_of_date: pd.Timestamp
    ) -> pd.DataFrame:
        """
        All observations of ``concept_id`` for ``entity_ids`` up to ``as_of_date``.

        One backend call per invocation, whatever the number of subjects. An
        as-of date at midnight covers the whole day.

        Raises:
            DataAccessError: if the backend fails or answers with a malformed frame.
        """
        ids = list(entity_ids)
        if not ids:
            return empty_observations()
        as_of_date = pd.Timestamp(as_of_date)
        logger.debug(
            f"Fetching concept {concept_id} for {len(ids)} subjects as of {as_of_date}"
        )
        try:
            frame = self._fetch(concept_id, ids, as_of_date)
        except DataAccessError:
            raise
        except Exception as e:
            raise DataAccessError(
                f"Failed to fetch concept {concept_id} for {len(ids)} subjects: {e}"
            ) from e
        frame = normalize_observations(frame)
        keep = (
            (frame[CONCEPT_COL] == concept_id)
            & frame[PID_COL].isin(ids)
            & (frame[TIMESTAMP_COL] < end_of_period(as_of_date))
        )
        return sort_observations(frame[keep], PID_COL)

    @abstractmethod
    def _fetch(
        self, concept_id: str, entity_ids: List, as_of_date: pd.Timestamp
    ) -> pd.DataFrame:
        """Backend query; may return a superset that the base class filters."""

    def entity_ids(self) -> frozenset:
        """
        Every subject known to the store.

        Raises:
            DataAccessError: if the backend fails.
        """
        try:
            return frozenset(self._entity_ids())
        except DataAccessError:
            raise
        except Exception as e:
            raise DataAccessError(f"Failed to list subjects: {e}") from e

    @abstractmethod
    def _entity_ids(self) -> Iterable:
        """Backend query for the population."""


class DataFrameObservationSource(ObservationSource):
    """Observation source over an in-memory events frame."""

    def __init__(self, events: pd.DataFrame) -> None:
        self.events = normalize_observations(events)
        self._by_concept = {
            concept: group for concept, group in self.events.groupby(CONCEPT_COL, sort=False)
        }

    def _fetch(
        self, concept_id: str, entity_ids: List, as_of_date: pd.Timestamp
    ) -> pd.DataFrame:
        events = self._by_concept.get(concept_id)
        if events is None:
            return empty_observations()
        return events[events[PID_COL].isin(entity_ids)]

    def _entity_ids(self) -> frozenset:
        return frozenset(self.events[PID_COL].unique())


class FileObservationSource(ObservationSource):
    """
    Observation source backed by a CSV or parquet file, loaded once on first use.

    An optional ``subjects`` file (one id per row, column ``subject_id``) defines
    the population; otherwise every subject with an observation is known.
    """

    def __init__(self, path: str, subjects_path: Optional[str] = None) -> None:
        self.path = path
        self.subjects_path = subjects_path
        self._source: Optional[DataFrameObservationSource] = None
        self._subjects: Optional[frozenset] = None
        self._lock = threading.Lock()

    def _load(self) -> DataFrameObservationSource:
        with self._lock:
            if self._source is None:
                logger.info(f"Loading observations from {self.path}")
                self._source = DataFrameObservationSource(self._read(self.path))
                logger.info(f"Loaded {len(self._source.events)} observations")
        return self._source

    @staticmethod
    def _read(path: str, parse_dates: bool = True) -> pd.DataFrame:
        if not exists(path):
            raise DataAccessError(f"Observation file not found: {path}")
        try:
            if path.endswith(".parquet"):
                return pd.read_parquet(path)
            if path.endswith(".csv"):
                return pd.read_csv(
                    path, parse_dates=[TIMESTAMP_COL] if parse_dates else False
                )
        except (OSError, ValueError) as e:
            raise DataAccessError(f"Could not read observations from {path}") from e
        raise DataAccessError(f"Unknown file type: {path}")

    def _fetch(
        self, concept_id: str, entity_ids: List, as_of_date: pd.Timestamp
    ) -> pd.DataFrame:
        return self._load()._fetch(concept_id, entity_ids, as_of_date)

    def _entity_ids(self) -> frozenset:
        if self.subjects_path is not None:
            if self._subjects is None:
                subjects = self._read(self.subjects_path, parse_dates=False)
                if PID_COL not in subjects.columns:
                    raise DataAccessError(
                        f"Subjects file {self.subjects_path} has no '{PID_COL}' column"
                    )
                self._subjects = frozenset(subjects[PID_COL].unique())
            return self._subjects
        return self._load().entity_ids()
