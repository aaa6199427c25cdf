import pytest

from tyrestore import llm, wheelsize
from tyrestore.ai_routes import sort_fitment_results
from tyrestore.fitment_cache import ai_fitment_key


class TestLlmParsers:
    def test_size_list_from_fenced_json(self):
        content = '```json\n["195/65 R15", "205/55R16", "195/65R15"]\n```'
        assert llm.parse_size_list(content) == ["195/65R15", "205/55R16"]

    def test_size_list_falls_back_to_regex(self):
        assert llm.parse_size_list("Try 185/60R15 or 195/55 R16.") == ["185/60R15", "195/55R16"]

    def test_typed_sizes(self):
        content = '{"sizes": [{"size": "205/65R16", "type": "Factory Fitment"}, "215/60R17", {"type": "x"}]}'
        assert llm.parse_typed_sizes(content) == [
            {"size": "205/65R16", "type": "Factory Fitment"},
            {"size": "215/60R17", "type": "Unknown"},
        ]

    def test_typed_sizes_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            llm.parse_typed_sizes('["205/65R16"]')
        with pytest.raises(ValueError):
            llm.parse_typed_sizes("no json here")


class TestWheelSizeHelpers:
    def test_normalize_make_model(self):
        assert wheelsize.normalize_make_model("Maruti Suzuki", "Grand Vitara") == ("Suzuki", "Grand-Vitara")
        assert wheelsize.normalize_make_model("Honda", "City") == ("Honda", "City")

    def test_years_from_generations(self):
        data = {"data": [{"start": 2015, "end": 2017}, {"start": 2020, "end": None}, {"start": "bad", "end": 1}]}
        assert wheelsize.years_from_generations(data) == [2015, 2016, 2017, 2020]

    def test_normalize_variants(self):
        data = {"data": [{"slug": "1-2i", "trim": "1.2i", "engine": {"fuel": "Petrol", "power": {"hp": 82}}}]}
        assert wheelsize.normalize_variants(data) == [
            {"name": "1.2i", "slug": "1-2i", "fuel": "Petrol", "power": 82, "start_year": None, "end_year": None}
        ]

    def test_sizes_from_fitment_data(self):
        data = {
            "data": [
                {
                    "wheels": [
                        {"front": {"tire_full": "185/65R15 88H"}, "rear": {"tire_full": "185/65R15 88H"}},
                        {"front": {"tire": "195/55r16"}},
                    ]
                }
            ]
        }
        assert wheelsize.sizes_from_fitment_data(data) == ["185/65R15", "195/55R16"]


class TestFitmentOrdering:
    def test_verified_first_then_bigger_rims(self):
        results = [
            {"size": "185/65R15", "verified": False},
            {"size": "205/55R16", "verified": True},
            {"size": "215/45R17", "verified": False},
            {"size": "185/65R15", "verified": True},
        ]
        ordered = [(r["size"], r["verified"]) for r in sort_fitment_results(results)]
        assert ordered == [
            ("205/55R16", True),
            ("185/65R15", True),
            ("215/45R17", False),
            ("185/65R15", False),
        ]

    def test_cache_key_is_case_insensitive(self):
        assert ai_fitment_key(" Hyundai ", "Creta", 2020) == ai_fitment_key("hyundai", "CRETA", "2020")
