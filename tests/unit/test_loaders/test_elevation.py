import sqlite3
import pytest
import requests
from unittest.mock import MagicMock, patch
from core.errors import ProviderUnavailable
from concurrent.futures import ThreadPoolExecutor
from loaders.elevation import ElevationCache, ElevationLoader, ElevationResult


@pytest.fixture
def mock_loader(tmp_path):
    cache_path = str(tmp_path / "test_elev.db")
    with patch('requests.Session') as mock_session, patch('time.sleep'):
        loader = ElevationLoader(url="https://elevation.example/api/v1/lookup", cache_path=cache_path)
        loader.session = mock_session.return_value
        yield loader


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    return response


def test_get_elevation_success(mock_loader):
    """Verify successful elevation fetch."""
    mock_loader.session.get.return_value = _response(
        {"results": [{"latitude": -6.8, "longitude": 39.28, "elevation": 42.0}]}
    )

    result = mock_loader.lookup(-6.8, 39.28)
    assert result.elevation_meters == 42.0
    assert result.data_source == "SRTM"
    assert mock_loader.session.get.call_args[1]["params"] == {"locations": "-6.8,39.28"}


def test_caching(mock_loader):
    mock_loader.session.get.return_value = _response({"results": [{"elevation": 12.5}]})

    assert mock_loader.get_elevation(-6.8, 39.28) == 12.5
    assert mock_loader.get_elevation(-6.8, 39.28) == 12.5
    assert mock_loader.session.get.call_count == 1


def test_void_value_is_unavailable(mock_loader):
    """SRTM voids come back as large negative values."""
    mock_loader.session.get.return_value = _response({"results": [{"elevation": -32768}]})

    with pytest.raises(ProviderUnavailable):
        mock_loader.get_elevation(-6.8, 39.28)


def test_malformed_response(mock_loader):
    mock_loader.session.get.return_value = _response({"results": []})

    with pytest.raises(ProviderUnavailable):
        mock_loader.get_elevation(-6.8, 39.28)


def test_http_error(mock_loader):
    mock_loader.session.get.side_effect = requests.ConnectionError("unreachable")

    with pytest.raises(ProviderUnavailable) as exc:
        mock_loader.get_elevation(-6.8, 39.28)
    assert exc.value.provider == "elevation"
    assert mock_loader.session.get.call_count == 2


def test_concurrent_lookups_share_rate_limit(tmp_path):
    """Perimeter samples arrive from many threads; each request still waits its turn."""
    clock = {"now": 1000.0}

    def fake_sleep(seconds):
        clock["now"] += seconds

    with patch('requests.Session'), patch('loaders.elevation._last_request_time', 0.0), \
            patch('loaders.elevation.time') as fake_time:
        fake_time.time.side_effect = lambda: clock["now"]
        fake_time.sleep.side_effect = fake_sleep

        loader = ElevationLoader(url="https://elevation.example/api/v1/lookup",
                                 cache_path=str(tmp_path / "test_elev.db"))
        loader.session = MagicMock()
        loader.session.get.return_value = _response({"results": [{"elevation": 10.0}]})

        with ThreadPoolExecutor(max_workers=8) as pool:
            heights = list(pool.map(lambda i: loader.get_elevation(-6.8 + i * 0.001, 39.28), range(8)))

    assert heights == [10.0] * 8
    assert loader.session.get.call_count == 8
    # first request goes straight out, the other 7 each wait a full interval
    assert fake_time.sleep.call_count == 7
    assert clock["now"] == pytest.approx(1000.0 + 7 * 0.2)


def test_cache_closes_connections(tmp_path):
    cache = ElevationCache(str(tmp_path / "test_elev.db"))

    with patch('loaders.elevation.sqlite3.connect') as connect:
        conn = connect.return_value
        conn.execute.return_value.fetchone.return_value = None
        assert cache.lookup("provider", -6.8, 39.28) is None
        cache.store("provider", ElevationResult(-6.8, 39.28, 12.0, "SRTM", 30.0))
        assert conn.close.call_count == 2

        conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        with pytest.raises(sqlite3.OperationalError):
            cache.lookup("provider", -6.8, 39.28)
        assert conn.close.call_count == 3


def test_cache_is_per_provider(tmp_path):
    cache = ElevationCache(str(tmp_path / "test_elev.db"))
    cache.store("https://a.example", ElevationResult(-6.8, 39.28, 12.0, "SRTM", 30.0))

    assert cache.lookup("https://a.example", -6.8, 39.28).elevation_meters == 12.0
    assert cache.lookup("https://b.example", -6.8, 39.28) is None
