import unittest

import numpy as np
import pandas as pd

from cohortcalc.constants.cohort import ON_OR_BEFORE_ANCHOR
from cohortcalc.modules.calculation.context import EvaluationContext
from cohortcalc.modules.calculation.derived import (
    ImprovementCalculation,
    NearestObservationCalculation,
    ValueDeltaCalculation,
)
from cohortcalc.modules.calculation.engine import CalculationEngine
from cohortcalc.modules.calculation.observations import (
    FirstObservationCalculation,
    LastObservationCalculation,
    ObservationDateCalculation,
    ObservationsCalculation,
)
from tests.helpers.observations import CountingSource, make_observations

ENROLLMENT = "HIV_ENROLLMENT"
CD4_PERCENT = "CD4_PERCENT"


class TestNearestObservation(unittest.TestCase):
    def setUp(self):
        anchor = pd.Timestamp("2015-03-25")
        self.events = make_observations(
            [
                # Subject 1: candidates around the anchor
                (1, ENROLLMENT, anchor),
                (1, CD4_PERCENT, anchor - pd.Timedelta(days=92), 10.0),
                (1, CD4_PERCENT, anchor - pd.Timedelta(days=91), 11.0),
                (1, CD4_PERCENT, anchor, 12.0),
                (1, CD4_PERCENT, anchor + pd.Timedelta(days=1), 13.0),
                # Subject 2: only outside the window
                (2, ENROLLMENT, anchor),
                (2, CD4_PERCENT, anchor - pd.Timedelta(days=92), 14.0),
                (2, CD4_PERCENT, anchor + pd.Timedelta(days=1), 15.0),
                # Subject 3: no enrollment
                (3, CD4_PERCENT, anchor, 16.0),
                # Subject 4: A-91 and A-90 only
                (4, ENROLLMENT, anchor),
                (4, CD4_PERCENT, anchor - pd.Timedelta(days=91), 17.0),
                (4, CD4_PERCENT, anchor - pd.Timedelta(days=90), 18.0),
            ]
        )
        self.source = CountingSource(self.events)
        self.engine = CalculationEngine(self.source)
        self.context = EvaluationContext.create("2016-01-01")
        self.enrollment = ObservationDateCalculation(ENROLLMENT)

    def test_exact_anchor_match_wins(self):
        result = self.engine.calculate(
            NearestObservationCalculation(CD4_PERCENT, self.enrollment), [1], self.context
        )
        self.assertEqual(result[1].value, 12.0)
        self.assertEqual(result[1].time, pd.Timestamp("2015-03-25"))

    def test_window_edges(self):
        result = self.engine.calculate(
            NearestObservationCalculation(CD4_PERCENT, self.enrollment),
            [2, 3, 4],
            self.context,
        )
        # Outside the window or without anchor: absent
        self.assertIsNone(result[2])
        self.assertIsNone(result[3])
        # A-91 is excluded, A-90 qualifies
        self.assertEqual(result[4].value, 18.0)

    def test_inclusive_boundary_variant(self):
        calculation = NearestObservationCalculation(
            CD4_PERCENT, self.enrollment, boundary=ON_OR_BEFORE_ANCHOR
        )
        result = self.engine.calculate(calculation, [2, 4], self.context)
        self.assertIsNone(result[2])
        self.assertEqual(result[4].value, 18.0)

        only_edge = make_observations(
            [(5, ENROLLMENT, "2015-03-25"), (5, CD4_PERCENT, "2014-12-24", 9.0)]
        )
        engine = CalculationEngine(CountingSource(only_edge))
        inclusive = engine.calculate(calculation, [5], self.context)
        exclusive = engine.calculate(
            NearestObservationCalculation(CD4_PERCENT, self.enrollment), [5], self.context
        )
        self.assertEqual(inclusive[5].value, 9.0)
        self.assertIsNone(exclusive[5])

    def test_only_anchored_subjects_are_fetched(self):
        self.engine.calculate(
            NearestObservationCalculation(CD4_PERCENT, self.enrollment), [1, 3], self.context
        )
        cd4_calls = [call for call in self.source.calls if call[0] == CD4_PERCENT]
        self.assertEqual(len(cd4_calls), 1)
        self.assertEqual(cd4_calls[0][1], (1,))

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            NearestObservationCalculation(CD4_PERCENT, self.enrollment, boundary="after")
        with self.assertRaises(ValueError):
            NearestObservationCalculation(CD4_PERCENT, self.enrollment, window_days=-1)
        with self.assertRaises(ValueError):
            ObservationDateCalculation(ENROLLMENT, which="middle")


class TestCd4Scenario(unittest.TestCase):
    """Initial CD4% near enrollment, change to the latest value and its classification."""

    def setUp(self):
        self.events = make_observations(
            [
                (1, CD4_PERCENT, "2015-01-01", 20.0),
                (1, CD4_PERCENT, "2015-03-01", 25.0),
                (1, ENROLLMENT, "2015-03-25"),
                # Subject 2 declines
                (2, CD4_PERCENT, "2015-03-20", 30.0),
                (2, ENROLLMENT, "2015-03-25"),
                (2, CD4_PERCENT, "2015-06-01", 22.0),
                # Subject 3 has no CD4% near enrollment
                (3, ENROLLMENT, "2015-03-25"),
                (3, CD4_PERCENT, "2015-06-01", 40.0),
            ]
        )
        self.engine = CalculationEngine(CountingSource(self.events))
        self.context = EvaluationContext.create("2015-12-31")
        self.initial = NearestObservationCalculation(
            CD4_PERCENT, ObservationDateCalculation(ENROLLMENT)
        )

    def test_later_in_window_observation_selected(self):
        result = self.engine.calculate(self.initial, [1], self.context)
        self.assertEqual(result[1].value, 25.0)
        self.assertEqual(result[1].time, pd.Timestamp("2015-03-01"))

    def test_delta_and_improvement(self):
        delta = ValueDeltaCalculation(FirstObservationCalculation(CD4_PERCENT), self.initial)
        deltas = self.engine.calculate(delta, [1], self.context)
        self.assertEqual(deltas[1], 5.0)

        improved = self.engine.calculate(ImprovementCalculation(delta), [1], self.context)
        self.assertEqual(improved[1], "Yes")

    def test_tri_state(self):
        delta = ValueDeltaCalculation(self.initial, LastObservationCalculation(CD4_PERCENT))
        improvement = ImprovementCalculation(delta)
        result = self.engine.calculate(improvement, [1, 2, 3, 4], self.context)
        # Subject 1: initial 25, last 25 -> no change
        self.assertEqual(result[1], "No")
        self.assertEqual(result[2], "No")
        # Missing initial value, or no data at all: absent, never "No"
        self.assertIsNone(result[3])
        self.assertIsNone(result[4])

        deltas = self.engine.calculate(delta, [2, 3], self.context)
        self.assertEqual(deltas[2], -8.0)
        self.assertTrue(np.isnan(deltas[3]))

    def test_observation_lists(self):
        result = self.engine.calculate(ObservationsCalculation(CD4_PERCENT), [1, 4], self.context)
        self.assertEqual([v.value for v in result[1]], [20.0, 25.0])
        self.assertIsNone(result[4])

    def test_observation_dates(self):
        first = self.engine.calculate(ObservationDateCalculation(CD4_PERCENT), [1, 4], self.context)
        last = self.engine.calculate(
            ObservationDateCalculation(CD4_PERCENT, "last"), [1, 4], self.context
        )
        self.assertEqual(first[1], pd.Timestamp("2015-01-01"))
        self.assertEqual(last[1], pd.Timestamp("2015-03-01"))
        self.assertTrue(pd.isna(first[4]))


if __name__ == "__main__":
    unittest.main()
