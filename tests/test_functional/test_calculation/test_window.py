import unittest

import pandas as pd

from cohortcalc.constants.cohort import BEFORE_OR_EQUAL, ON_OR_BEFORE_ANCHOR
from cohortcalc.constants.data import PID_COL, TEXT_VALUE_COL, TIMESTAMP_COL, VALUE_COL
from cohortcalc.functional.calculation.window import (
    compute_anchor_window_mask,
    compute_period_mask,
    compute_value_mask,
    end_of_period,
    select_first,
    select_last,
    sort_observations,
)


class TestAnchorWindowMask(unittest.TestCase):
    def setUp(self):
        self.anchor = pd.Timestamp("2015-03-25")
        self.times = pd.Series(
            [
                self.anchor - pd.Timedelta(days=92),
                self.anchor - pd.Timedelta(days=91),
                self.anchor - pd.Timedelta(days=90),
                self.anchor,
                self.anchor + pd.Timedelta(days=1),
            ]
        )
        self.anchors = pd.Series([self.anchor] * len(self.times))

    def test_before_or_equal_boundaries(self):
        mask = compute_anchor_window_mask(self.times, self.anchors, 91, BEFORE_OR_EQUAL)
        # A-91 is excluded, the anchor itself is included by equality
        self.assertEqual(mask.tolist(), [False, False, True, True, False])

    def test_on_or_before_boundaries(self):
        mask = compute_anchor_window_mask(
            self.times, self.anchors, 91, ON_OR_BEFORE_ANCHOR
        )
        self.assertEqual(mask.tolist(), [False, True, True, True, False])

    def test_missing_anchor_never_matches(self):
        anchors = pd.Series([pd.NaT] * len(self.times), dtype="datetime64[ns]")
        mask = compute_anchor_window_mask(self.times, anchors, 91)
        self.assertFalse(mask.any())

    def test_unknown_boundary(self):
        with self.assertRaises(ValueError):
            compute_anchor_window_mask(self.times, self.anchors, 91, "around")


class TestPeriodMask(unittest.TestCase):
    def setUp(self):
        self.times = pd.Series(
            pd.to_datetime(
                ["2019-12-31 23:59", "2020-01-01", "2020-01-31 18:00", "2020-02-01"]
            )
        )

    def test_inclusive_period(self):
        mask = compute_period_mask(
            self.times, pd.Timestamp("2020-01-01"), pd.Timestamp("2020-01-31")
        )
        # onOrBefore at midnight covers the whole last day
        self.assertEqual(mask.tolist(), [False, True, True, False])

    def test_open_ends(self):
        self.assertTrue(compute_period_mask(self.times).all())
        mask = compute_period_mask(self.times, on_or_after=pd.Timestamp("2020-01-31"))
        self.assertEqual(mask.tolist(), [False, False, True, True])

    def test_end_of_period(self):
        self.assertEqual(
            end_of_period(pd.Timestamp("2020-01-31")), pd.Timestamp("2020-02-01")
        )
        self.assertEqual(
            end_of_period(pd.Timestamp("2020-01-31 12:00")),
            pd.Timestamp("2020-01-31 12:00:00.000001"),
        )


class TestValueMask(unittest.TestCase):
    def setUp(self):
        self.obs = pd.DataFrame(
            {
                VALUE_COL: [200.0, 350.0, 500.0, float("nan")],
                TEXT_VALUE_COL: [None, None, None, "POSITIVE"],
            }
        )

    def test_numeric_range_is_inclusive(self):
        mask = compute_value_mask(self.obs, max_value=350)
        self.assertEqual(mask.tolist(), [True, True, False, False])
        mask = compute_value_mask(self.obs, min_value=350, max_value=500)
        self.assertEqual(mask.tolist(), [False, True, True, False])

    def test_coded_values(self):
        mask = compute_value_mask(self.obs, values=["POSITIVE"])
        self.assertEqual(mask.tolist(), [False, False, False, True])

    def test_no_filters(self):
        self.assertTrue(compute_value_mask(self.obs).all())


class TestSelection(unittest.TestCase):
    def setUp(self):
        self.obs = pd.DataFrame(
            {
                PID_COL: [2, 1, 1, 2, 1],
                TIMESTAMP_COL: pd.to_datetime(
                    ["2020-01-05", "2020-01-03", "2020-01-01", "2020-01-05", "2020-01-02"]
                ),
                VALUE_COL: [1.0, 2.0, 3.0, 4.0, 5.0],
            }
        )

    def test_sort_is_stable(self):
        result = sort_observations(self.obs, PID_COL)
        self.assertEqual(result[PID_COL].tolist(), [1, 1, 1, 2, 2])
        self.assertEqual(result[VALUE_COL].tolist(), [3.0, 5.0, 2.0, 1.0, 4.0])

    def test_first_and_last(self):
        ordered = sort_observations(self.obs, PID_COL)
        last = select_last(ordered, PID_COL).set_index(PID_COL)[VALUE_COL]
        first = select_first(ordered, PID_COL).set_index(PID_COL)[VALUE_COL]
        # Equal timestamps for subject 2: the later row in source order is last
        self.assertEqual(last.to_dict(), {1: 2.0, 2: 4.0})
        self.assertEqual(first.to_dict(), {1: 3.0, 2: 1.0})


if __name__ == "__main__":
    unittest.main()
