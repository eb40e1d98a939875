import unittest

import pandas as pd

from cohortcalc.modules.calculation.derived import ImprovementCalculation, ValueDeltaCalculation
from cohortcalc.modules.calculation.observations import (
    FirstObservationCalculation,
    LastObservationCalculation,
)
from cohortcalc.modules.cohort_handling.build import DefinitionBuilder
from cohortcalc.modules.cohort_handling.definitions import (
    CalculationCohortDefinition,
    ExpressionCohortDefinition,
    ObservationCohortDefinition,
    StaticCohortDefinition,
)
from tests.helpers.observations import CountingSource, make_observations


class TestDefinitionBuilder(unittest.TestCase):
    def setUp(self):
        self.concepts = {"SCREENING": "TB/1", "TEST": "HIV/1", "POSITIVE": "HIV/703"}
        self.cohorts = {
            "screened": {"concept": "SCREENING"},
            "positive": {"concept": "TEST", "values": ["POSITIVE"]},
            "both": {"expression": "screened & positive"},
            "not_screened": {"expression": "~screened", "universe": "everyone"},
            "everyone": {"ids": [1, 2, 3]},
            "improved": {
                "calculation": {
                    "name": "improvement",
                    "delta": {
                        "name": "value_delta",
                        "earlier": {"name": "first_observation", "concept": "CD4"},
                        "later": {"name": "last_observation", "concept": "CD4"},
                    },
                },
                "values": ["Yes"],
            },
        }
        self.builder = DefinitionBuilder(self.cohorts, self.concepts)

    def test_concepts_are_resolved(self):
        screened = self.builder.build_cohort("screened")
        positive = self.builder.build_cohort("positive")
        self.assertEqual(screened, ObservationCohortDefinition("TB/1"))
        self.assertEqual(positive.values, ("HIV/703",))

    def test_unknown_concept_names_are_ids(self):
        builder = DefinitionBuilder({"raw": {"concept": "LOINC/1234"}})
        self.assertEqual(builder.build_cohort("raw").concept, "LOINC/1234")

    def test_nested_calculation(self):
        improved = self.builder.build_cohort("improved")
        self.assertIsInstance(improved, CalculationCohortDefinition)
        expected = ImprovementCalculation(
            ValueDeltaCalculation(FirstObservationCalculation("CD4"), LastObservationCalculation("CD4"))
        )
        self.assertEqual(improved.calculation, expected)
        self.assertEqual(improved.values, ("Yes",))

    def test_expression_reuses_cohorts(self):
        both = self.builder.build_cohort("both")
        self.assertIsInstance(both, ExpressionCohortDefinition)
        searches = dict(both.searches)
        self.assertIs(searches["screened"].definition, self.builder.build_cohort("screened"))
        self.assertEqual(both.declared_parameters(), ("onOrAfter", "onOrBefore"))

    def test_universe(self):
        not_screened = self.builder.build_cohort("not_screened")
        self.assertEqual(not_screened.universe.definition, StaticCohortDefinition({1, 2, 3}))

    def test_indicators(self):
        indicators = self.builder.build_indicators(
            {
                "tb": {
                    "cohort": "both",
                    "mapping": "onOrAfter=${startDate},onOrBefore=${endDate}",
                    "denominator": {"cohort": "screened", "mapping": "onOrBefore=${endDate}"},
                }
            }
        )
        self.assertEqual(len(indicators), 1)
        events = make_observations(
            [
                (1, "TB/1", "2020-01-10"),
                (1, "HIV/1", "2020-01-10", None, "HIV/703"),
                (2, "TB/1", "2019-12-10"),
                (2, "HIV/1", "2020-01-10", None, "HIV/703"),
                (3, "HIV/1", "2020-01-10", None, "HIV/664"),
            ]
        )
        result = indicators[0].evaluate(
            {"startDate": "2020-01-01", "endDate": "2020-01-31"}, CountingSource(events)
        )
        self.assertEqual(result.count, 1)
        self.assertEqual(result.denominator_count, 2)
        self.assertEqual(result.percentage, 50.0)

    def test_indicator_with_several_cohorts(self):
        period = "onOrAfter=${startDate},onOrBefore=${endDate}"
        indicator = self.builder.build_indicator(
            "screened_or_positive",
            {
                "cohorts": [
                    {"cohort": "screened", "mapping": period},
                    {"cohort": "positive", "mapping": period},
                ],
                "combine": "or",
            },
        )
        self.assertEqual(indicator.combine, "or")
        self.assertEqual(len(indicator.cohorts), 2)
        events = make_observations(
            [
                (1, "TB/1", "2020-01-10"),
                (2, "HIV/1", "2020-01-10", None, "HIV/703"),
                (3, "HIV/1", "2020-01-10", None, "HIV/664"),
            ]
        )
        result = indicator.evaluate(
            {"startDate": "2020-01-01", "endDate": "2020-01-31"}, CountingSource(events)
        )
        self.assertEqual(result.cohort, frozenset({1, 2}))

    def test_unknown_cohort(self):
        with self.assertRaises(ValueError):
            self.builder.build_cohort("nobody")


class TestExpressionEvaluationFromConfig(unittest.TestCase):
    def test_complement_against_configured_universe(self):
        builder = DefinitionBuilder(
            {
                "screened": {"concept": "TB"},
                "everyone": {"ids": [1, 2, 3]},
                "not_screened": {
                    "expression": "~screened",
                    "universe": "everyone",
                    "searches": {"screened": "onOrBefore=${endDate}"},
                },
            }
        )
        indicator = builder.build_indicator("unscreened", {"cohort": "not_screened"})
        source = CountingSource(make_observations([(1, "TB", "2020-01-10")]))
        result = indicator.evaluate({"endDate": pd.Timestamp("2020-01-31")}, source)
        self.assertEqual(result.cohort, frozenset({2, 3}))


if __name__ == "__main__":
    unittest.main()
