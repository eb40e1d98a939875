import unittest

from cohortcalc.modules.cohort_handling.validator import DefinitionValidator


class TestDefinitionValidator(unittest.TestCase):
    def setUp(self):
        self.cohorts = {
            "screened": {"concept": "TB_SCREENING"},
            "hiv_positive": {"concept": "HIV_TEST", "values": ["POSITIVE"]},
            "low_cd4": {"concept": "CD4", "min_value": 0, "max_value": 350},
            "screened_and_positive": {
                "expression": "screened & hiv_positive",
                "searches": {"screened": "onOrAfter=${onOrAfter},onOrBefore=${onOrBefore}"},
            },
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
            "universe": {"ids": [1, 2, 3]},
        }
        self.indicators = {
            "tb": {
                "cohort": "screened_and_positive",
                "mapping": "onOrAfter=${startDate},onOrBefore=${endDate}",
                "denominator": "screened",
            }
        }

    def test_valid_config(self):
        DefinitionValidator(self.cohorts, self.indicators).validate()

    def test_exactly_one_kind(self):
        self.cohorts["bad"] = {"concept": "X", "expression": "screened"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()
        self.cohorts["bad"] = {"values": ["X"]}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_range_order(self):
        self.cohorts["low_cd4"]["min_value"] = 500
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()
        self.cohorts["low_cd4"]["min_value"] = "low"
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_expression_references(self):
        self.cohorts["bad"] = {"expression": "screened & unknown"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_cycles(self):
        self.cohorts["a"] = {"expression": "b | screened"}
        self.cohorts["b"] = {"expression": "a"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_self_reference(self):
        self.cohorts["a"] = {"expression": "a | screened"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_mapping_syntax(self):
        self.cohorts["screened_and_positive"]["searches"]["screened"] = "onOrAfter=${start"
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_unknown_calculation(self):
        self.cohorts["improved"]["calculation"]["delta"]["name"] = "magic"
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_indicator_references(self):
        self.indicators["tb"]["cohort"] = "nobody"
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts, self.indicators).validate()

    def test_indicator_denominator(self):
        self.indicators["tb"]["denominator"] = {"cohort": "nobody"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts, self.indicators).validate()

    def test_indicator_cohort_list(self):
        self.indicators["tb"] = {"cohorts": ["screened", {"cohort": "hiv_positive"}], "combine": "or"}
        DefinitionValidator(self.cohorts, self.indicators).validate()
        self.indicators["tb"]["combine"] = "xor"
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts, self.indicators).validate()
        self.indicators["tb"] = {"cohorts": [], "cohort": "screened"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts, self.indicators).validate()

    def test_invalid_cohort_name(self):
        self.cohorts["has space"] = {"concept": "X"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()

    def test_keyword_cohort_name(self):
        self.cohorts["in"] = {"concept": "X"}
        with self.assertRaises(ValueError):
            DefinitionValidator(self.cohorts).validate()


if __name__ == "__main__":
    unittest.main()
