"""
Unit tests for the HTTP client
"""

from unittest.mock import Mock

import pytest
import requests

from scanner.network import HttpClient, parse_price, quote_file_name
from tests.fakes import FakeSession, encrypt_envelope, make_response


class TestHelpers:
    """Price parsing and file name encoding"""

    @pytest.mark.parametrize("raw, expected", [
        ("$1,299", 1299.0),
        ("$49.99", 49.99),
        ("120 (used)", 120.0),
        (250, 250.0),
        ("$??", None),
        ("Free", None),
        ("", None),
        (None, None),
        ("n/a", None),
    ])
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected

    def test_quote_file_name(self):
        assert quote_file_name("Sony IER-Z1R (5128) L.txt") == "Sony%20IER-Z1R%20(5128)%20L.txt"
        assert quote_file_name("A/B & C") == "A%2FB%20%26%20C"


class TestFetchJson:
    """Catalog fetches with retry"""

    def test_success(self, params):
        session = FakeSession({"https://x/pb.json": make_response(200, json_data=[{"name": "A"}])})
        assert HttpClient(params, session).fetch_json("https://x/pb.json") == [{"name": "A"}]

    def test_http_error_not_retried(self, params):
        session = FakeSession()
        assert HttpClient(params, session).fetch_json("https://x/missing.json") is None
        assert len(session.get_calls) == 1

    def test_transport_errors_retried_then_succeed(self, params):
        session = Mock()
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            make_response(200, json_data=[]),
        ]
        assert HttpClient(params, session).fetch_json("https://x/pb.json") == []
        assert session.get.call_count == 3

    def test_retries_exhausted(self, params):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("down")
        assert HttpClient(params, session).fetch_json("https://x/pb.json") is None
        assert session.get.call_count == params.retry_attempts + 1

    def test_invalid_json(self, params):
        session = FakeSession({"https://x/pb.json": make_response(200, text="<html>")})
        assert HttpClient(params, session).fetch_json("https://x/pb.json") is None

    def test_catalog_timeout_and_user_agent(self, params):
        session = Mock()
        session.get.return_value = make_response(200, json_data=[])
        HttpClient(params, session).fetch_json("https://x/pb.json")
        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == params.catalog_timeout
        assert kwargs["headers"]["User-Agent"] == "SquigRank-Scanner/2.0"


class TestFetchText:
    """Measurement fetches"""

    def test_success(self, params):
        session = FakeSession({"https://x/a.txt": make_response(200, text="20\t1\n")})
        assert HttpClient(params, session).fetch_text("https://x/a.txt") == "20\t1\n"

    def test_timeout_not_retried(self, params):
        session = Mock()
        session.get.side_effect = requests.Timeout("slow")
        assert HttpClient(params, session).fetch_text("https://x/a.txt") is None
        assert session.get.call_count == 1
        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == params.measurement_timeout

    def test_not_found(self, params):
        assert HttpClient(params, FakeSession()).fetch_text("https://x/a.txt") is None


class TestFetchEncrypted:
    """Encrypted proxy"""

    def test_decrypts_with_request_passphrase(self, params):
        def handler(url, data, headers):
            assert url == params.proxy_url
            assert headers["Origin"] == "https://graph.hangout.audio"
            assert headers["Content-Type"] == "application/x-www-form-urlencoded"
            return make_response(200, text=encrypt_envelope("20\t-5\n1000\t0\n", data["k"]))

        session = FakeSession(post_handler=handler)
        out = HttpClient(params, session).fetch_encrypted("iem/5128/data/Daybreak L.txt")
        assert out == "20\t-5\n1000\t0\n"
        url, data = session.post_calls[0]
        assert data["f_p"] == "iem/5128/data/Daybreak L.txt"
        assert len(data["k"]) == 36

    def test_fresh_passphrase_per_request(self, params):
        session = FakeSession(post_handler=lambda u, d, h: make_response(200, text=encrypt_envelope("x", d["k"])))
        client = HttpClient(params, session)
        client.fetch_encrypted("a")
        client.fetch_encrypted("b")
        assert session.post_calls[0][1]["k"] != session.post_calls[1][1]["k"]

    def test_undecryptable_payload(self, params):
        session = FakeSession(post_handler=lambda u, d, h: make_response(200, text=encrypt_envelope("x", "other-key")))
        assert HttpClient(params, session).fetch_encrypted("a") is None

    def test_empty_body_and_errors(self, params):
        assert HttpClient(params, FakeSession(post_handler=lambda u, d, h: make_response(200, text="  "))).fetch_encrypted("a") is None
        assert HttpClient(params, FakeSession()).fetch_encrypted("a") is None
        session = Mock()
        session.post.side_effect = requests.Timeout("slow")
        assert HttpClient(params, session).fetch_encrypted("a") is None


class TestSession:
    """Connection pooling"""

    def test_pool_sized_for_nested_workers(self, params):
        client = HttpClient(params)
        adapter = client.session.get_adapter("https://alpha.squig.link/data/phone_book.json")
        assert adapter._pool_maxsize == params.concurrent_domains * params.concurrent_measurements * 2
        client.close()

    def test_injected_session_left_alone(self, params):
        session = Mock()
        HttpClient(params, session)
        session.mount.assert_not_called()
