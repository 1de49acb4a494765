"""Tests for the marketplace clients and resolver."""

from unittest.mock import MagicMock

import pytest
import requests

from plugin_fleet_manager.api_clients import MarketplaceResolver, ModrinthAPIClient, SpigetAPIClient
from plugin_fleet_manager.errors import (
    RateLimitError,
    TransientIOError,
    parse_retry_after,
    rate_limit_from_exception,
)


def fake_response(status_code=200, json_data=None, headers=None):
    response = MagicMock(status_code=status_code, headers=headers or {})
    response.json.return_value = json_data
    return response


def test_modrinth_hash_lookup_falls_back_to_sha1():
    session = MagicMock()
    session.get.side_effect = [
        fake_response(404),
        fake_response(json_data={"project_id": "P7dR8mSH", "version_number": "5.4.102",
                                 "game_versions": ["1.20.4", "1.21"]}),
        fake_response(json_data={"id": "P7dR8mSH", "title": "LuckPerms", "slug": "luckperms",
                                 "description": "Permissions", "downloads": 1000}),
    ]
    client = ModrinthAPIClient(session=session)

    entry = client.find_by_hash("sha1digest", "sha512digest")

    assert entry.id == "P7dR8mSH"
    assert entry.name == "LuckPerms"
    assert entry.source_type == "modrinth"
    assert entry.version == "5.4.102"
    assert entry.source_url.endswith("/luckperms")

    first, second, _ = session.get.call_args_list
    assert first.args[0].endswith("/version_file/sha512digest")
    assert first.kwargs["params"] == {"algorithm": "sha512"}
    assert second.kwargs["params"] == {"algorithm": "sha1"}


def test_modrinth_hash_lookup_unknown_file():
    session = MagicMock()
    session.get.return_value = fake_response(404)

    assert ModrinthAPIClient(session=session).find_by_hash("a", "b") is None
    assert session.get.call_count == 2


def test_modrinth_hash_lookup_rate_limited():
    session = MagicMock()
    session.get.return_value = fake_response(429, headers={"Retry-After": "7"})

    with pytest.raises(RateLimitError) as excinfo:
        ModrinthAPIClient(session=session).find_by_hash("a", "b")

    assert excinfo.value.retry_after == 7


def test_modrinth_latest_version_skips_prereleases():
    session = MagicMock()
    session.get.return_value = fake_response(json_data=[
        {"version_number": "2.0-beta", "version_type": "beta", "files": []},
        {"version_number": "1.9", "version_type": "release",
         "files": [{"url": "https://cdn/other.jar"}, {"url": "https://cdn/main.jar", "primary": True}]},
    ])
    client = ModrinthAPIClient(session=session)

    assert client.get_latest_version("proj") == "1.9"
    assert client.get_download_url("proj") == "https://cdn/main.jar"


def test_spiget_search_not_found_is_empty():
    session = MagicMock()
    session.get.return_value = fake_response(404)

    assert SpigetAPIClient(session=session).search("nothing") == []


def test_spiget_search_parses_resources():
    session = MagicMock()
    session.get.return_value = fake_response(json_data=[
        {"id": 9089, "name": "EssentialsX", "tag": "Essentials", "downloads": 10,
         "author": {"id": 42}, "testedVersions": ["1.20", "1.21"]},
    ])

    (entry,) = SpigetAPIClient(session=session).search("EssentialsX")

    assert entry.id == "9089"
    assert entry.source_type == "spigot"
    assert entry.supported_versions == "1.20, 1.21"


def test_resolver_dispatches_by_source_type():
    modrinth, spiget = MagicMock(), MagicMock()
    modrinth.get_latest_version.return_value = "3.0"
    spiget.get_download_url.return_value = "https://api.spiget.org/v2/resources/1/download"
    resolver = MarketplaceResolver(modrinth=modrinth, spiget=spiget)

    assert resolver.get_latest_version("modrinth", "abc") == "3.0"
    assert resolver.get_download_url("spigot", "1").endswith("/resources/1/download")
    assert resolver.get_latest_version("custom", "x") is None
    assert resolver.get_download_url("manual", "x") is None


def test_resolver_caches_hash_lookups():
    modrinth = MagicMock()
    modrinth.find_by_hash.return_value = None
    resolver = MarketplaceResolver(modrinth=modrinth, spiget=MagicMock())

    assert resolver.find_by_hash("sha1", "sha512") is None
    assert resolver.find_by_hash("sha1", "sha512") is None
    modrinth.find_by_hash.assert_called_once_with("sha1", "sha512")


def test_parse_retry_after():
    assert parse_retry_after("12") == 12
    assert parse_retry_after(None) == 60
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 60


def test_rate_limit_from_exception():
    assert rate_limit_from_exception(RateLimitError(9)) == 9
    assert rate_limit_from_exception(ValueError("nope")) is None

    error = Exception("http")
    error.response = MagicMock(status_code=429, headers={})
    assert rate_limit_from_exception(error) == 60


@pytest.mark.parametrize("error", [requests.ConnectionError("down"), requests.Timeout("slow")])
def test_unreachable_marketplace_is_transient(error):
    session = MagicMock()
    session.get.side_effect = error

    with pytest.raises(TransientIOError):
        ModrinthAPIClient(session=session).get_download_url("proj")
    with pytest.raises(TransientIOError):
        ModrinthAPIClient(session=session).get_latest_version("proj")
    with pytest.raises(TransientIOError):
        SpigetAPIClient(session=session).get_latest_version("9089")


def test_modrinth_http_error_is_not_transient():
    session = MagicMock()
    response = fake_response(500)
    response.raise_for_status.side_effect = requests.HTTPError("server error")
    session.get.return_value = response

    assert ModrinthAPIClient(session=session).get_latest_version("proj") is None
