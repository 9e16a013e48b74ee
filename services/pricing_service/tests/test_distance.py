# CREATE FILE: services/pricing_service/tests/test_distance.py

import pytest
from unittest.mock import patch, MagicMock
import requests

from services.pricing_service.distance import (
    extract_city, create_distance_resolver, DistanceResolver, DistanceCache,
    BaseDistanceStrategy, GoogleMapsDistanceStrategy, CityHeuristicStrategy,
    DefaultDistanceStrategy
)
from services.pricing_service.pricing import load_config

MILES_PER_METER = 0.000621371
REQUESTS_GET = 'services.pricing_service.distance.requests.get'


def api_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def distance_payload(miles):
    return {
        "status": "OK",
        "rows": [{"elements": [{
            "status": "OK",
            "distance": {"value": int(round(miles / MILES_PER_METER))}
        }]}]
    }


def element_error_payload(status):
    return {"status": "OK", "rows": [{"elements": [{"status": status}]}]}


class TestExtractCity:

    def test_comma_separated_address(self):
        assert extract_city('123 Main St, San Francisco, CA 94102') == 'San Francisco'

    def test_abbreviations(self):
        assert extract_city('123 Main St, SF, CA') == 'San Francisco'
        assert extract_city('123 Main St, san fran, CA') == 'San Francisco'

    def test_oakland(self):
        assert extract_city('123 Main St, Oakland, CA') == 'Oakland'

    def test_marin_county(self):
        assert extract_city('123 Main St, Marin County, CA') == 'Marin County'
        assert extract_city('123 Main St, marin, CA') == 'Marin County'

    def test_unknown_format_returns_empty(self):
        assert extract_city('Unknown Address Format') == ''
        assert extract_city('') == ''

    def test_keyword_search(self):
        assert extract_city('Located in San Jose area') == 'San Jose'

    def test_unknown_city_title_cased(self):
        assert extract_city('123 Main St, new york, NY') == 'New York'

    def test_idempotent_and_case_insensitive(self):
        assert extract_city('SF') == extract_city('san fran') == 'San Francisco'
        assert extract_city('sf') == 'San Francisco'
        for city in ('San Francisco', 'Oakland', 'Marin County', 'San Jose'):
            assert extract_city(extract_city(city)) == city

    def test_known_city_inside_unknown_segment(self):
        assert extract_city('500 Market St, San Francisco CA 94105') == 'San Francisco'
        assert extract_city('1 Broadway, Oakland CA') == 'Oakland'

    def test_longest_keyword_wins(self):
        assert extract_city('Warehouse near South San Francisco BART') == 'South San Francisco'


class TestGoogleMapsDistanceStrategy:

    @pytest.fixture
    def strategy(self):
        return GoogleMapsDistanceStrategy(api_key='test-api-key', timeout=3)

    def test_converts_meters_to_miles(self, strategy):
        with patch(REQUESTS_GET, return_value=api_response(distance_payload(12.5))) as mock_get:
            miles = strategy.resolve('123 Main St, San Francisco, CA', '456 Oak Ave, Oakland, CA')

        assert miles == pytest.approx(12.5, abs=0.01)
        _, kwargs = mock_get.call_args
        assert kwargs['timeout'] == 3
        assert kwargs['params']['origins'] == '123 Main St, San Francisco, CA'
        assert kwargs['params']['destinations'] == '456 Oak Ave, Oakland, CA'

    def test_rounds_to_two_decimals(self, strategy):
        payload = {"status": "OK", "rows": [{"elements": [{"status": "OK", "distance": {"value": 14107}}]}]}
        with patch(REQUESTS_GET, return_value=api_response(payload)):
            miles = strategy.resolve('a', 'b')

        # 14107 m / 1609.34 = 8.7657...
        assert miles == 8.77

    def test_declines_without_api_key(self, monkeypatch):
        monkeypatch.delenv('GOOGLE_MAPS_API_KEY', raising=False)
        strategy = GoogleMapsDistanceStrategy()

        with patch(REQUESTS_GET) as mock_get:
            assert strategy.resolve('a', 'b') is None
        mock_get.assert_not_called()

    def test_reads_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv('GOOGLE_MAPS_API_KEY', 'env-key')
        strategy = GoogleMapsDistanceStrategy()

        with patch(REQUESTS_GET, return_value=api_response(distance_payload(4))) as mock_get:
            strategy.resolve('a', 'b')

        assert mock_get.call_args[1]['params']['key'] == 'env-key'

    @pytest.mark.parametrize("payload,status_code", [
        (element_error_payload('ZERO_RESULTS'), 200),
        (element_error_payload('NOT_FOUND'), 200),
        ({"status": "REQUEST_DENIED", "rows": []}, 200),
        ({"status": "OK", "rows": []}, 200),
        ({"status": "OK", "rows": [{"elements": [{"status": "OK"}]}]}, 200),
        (distance_payload(5), 500),
    ])
    def test_declines_on_unusable_response(self, strategy, payload, status_code):
        with patch(REQUESTS_GET, return_value=api_response(payload, status_code)):
            assert strategy.resolve('a', 'b') is None

    def test_declines_on_malformed_json(self, strategy):
        response = MagicMock()
        response.status_code = 200
        response.json.side_effect = ValueError("not json")

        with patch(REQUESTS_GET, return_value=response):
            assert strategy.resolve('a', 'b') is None

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("ETIMEDOUT"),
        requests.Timeout("read timed out"),
    ])
    def test_declines_on_network_error(self, strategy, error):
        with patch(REQUESTS_GET, side_effect=error):
            assert strategy.resolve('a', 'b') is None

    def test_successful_lookup_is_cached(self):
        strategy = GoogleMapsDistanceStrategy(api_key='test-api-key', cache=DistanceCache(use_redis=False))

        with patch(REQUESTS_GET, return_value=api_response(distance_payload(6))) as mock_get:
            first = strategy.resolve('1 A St, Oakland, CA', '2 B St, Oakland, CA')
            second = strategy.resolve('1 A St, Oakland, CA', '2 B St, Oakland, CA')

        assert first == second
        assert mock_get.call_count == 1
        assert strategy.cache.get_stats()["hits"] == 1


class TestCityHeuristicStrategy:

    def test_same_city(self):
        strategy = CityHeuristicStrategy(same_city_miles=8)
        assert strategy.resolve('1 A St, Oakland, CA', '2 B St, Oakland, CA') == 8

    def test_same_city_with_zip_in_city_segment(self):
        strategy = CityHeuristicStrategy(same_city_miles=8)
        assert strategy.resolve('500 Market St, San Francisco CA 94105',
                                '1 Main St, San Francisco, CA') == 8

    def test_unknown_cities_decline(self):
        strategy = CityHeuristicStrategy()
        assert strategy.resolve('Unknown Address Format', 'Another Unknown') is None

    def test_pair_table_lookup_misses_on_title_case(self):
        """Lowercase table keys never match the Title Case city names"""
        strategy = CityHeuristicStrategy(city_pairs={"san francisco-oakland": 12})
        assert strategy.resolve('1 A St, San Francisco, CA', '2 B St, Oakland, CA') is None

    def test_pair_table_matches_exact_key(self):
        strategy = CityHeuristicStrategy(city_pairs={"San Francisco-Oakland": 12})
        assert strategy.resolve('1 A St, San Francisco, CA', '2 B St, Oakland, CA') == 12


class TestDistanceResolver:

    @pytest.fixture
    def resolver(self):
        config = dict(load_config()["distance"])
        config.update({"api_key": "test-api-key", "use_redis_cache": False})
        return create_distance_resolver(config)

    def test_uses_api_result(self, resolver):
        with patch(REQUESTS_GET, return_value=api_response(distance_payload(12.5))):
            miles = resolver.resolve_distance('123 Main St, San Francisco, CA', '456 Oak Ave, Oakland, CA')

        assert miles == pytest.approx(12.5, abs=0.01)
        assert resolver.get_stats()["request_stats"]["google_maps"]["resolved"] == 1

    def test_missing_api_key_same_city(self, monkeypatch):
        monkeypatch.delenv('GOOGLE_MAPS_API_KEY', raising=False)
        resolver = create_distance_resolver({"use_redis_cache": False})

        miles = resolver.resolve_distance('123 Main St, San Francisco, CA', '456 Oak Ave, San Francisco, CA')
        assert miles == 8

    def test_zero_results_cross_city_falls_to_default(self, resolver):
        with patch(REQUESTS_GET, return_value=api_response(element_error_payload('ZERO_RESULTS'))):
            miles = resolver.resolve_distance('123 Main St, San Francisco, CA', '456 Oak Ave, San Jose, CA')

        assert miles == 25

    def test_network_error_same_city(self, resolver):
        with patch(REQUESTS_GET, side_effect=requests.ConnectionError("ETIMEDOUT")):
            miles = resolver.resolve_distance('123 Main St, San Francisco, CA', '456 Oak Ave, San Francisco, CA')

        assert miles == 8

    def test_never_raises_and_never_negative(self, resolver):
        addresses = [
            '', 'Unknown Address Format', '123 Main St, San Francisco, CA',
            '1 Elm, Oakland', 'Located in San Jose area', ',,,',
        ]
        with patch(REQUESTS_GET, side_effect=RuntimeError("boom")):
            for pickup in addresses:
                for delivery in addresses:
                    assert resolver.resolve_distance(pickup, delivery) >= 0

    def test_failing_strategy_is_skipped(self):
        class ExplodingStrategy(BaseDistanceStrategy):
            def __init__(self):
                super().__init__("exploding")

            def resolve(self, pickup_address, delivery_address):
                raise RuntimeError("strategy bug")

        resolver = DistanceResolver([ExplodingStrategy(), DefaultDistanceStrategy(25)])

        assert resolver.resolve_distance('a', 'b') == 25
        assert resolver.get_stats()["request_stats"]["exploding"]["errors"] == 1

    def test_negative_values_clamped(self):
        class NegativeStrategy(BaseDistanceStrategy):
            def __init__(self):
                super().__init__("negative")

            def resolve(self, pickup_address, delivery_address):
                return -3.0

        resolver = DistanceResolver([NegativeStrategy()])
        assert resolver.resolve_distance('a', 'b') == 0.0

    def test_all_declining_returns_default(self):
        resolver = DistanceResolver([CityHeuristicStrategy()], default_miles=25)
        assert resolver.calculate_distance('Unknown Address Format', 'Other place') == 25
