"""
Unit tests for client header parsing and the version guard.
"""

import base64
import json

import pytest
from starlette.datastructures import Headers

from shared.errors import UpgradeRequired, ValidationError
from service_licensing.app.http.headers import parse_ninja_headers
from service_licensing.app.http.versioning import check_version, compare_versions


def encode_payload(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class TestParseNinjaHeaders:
    """Test cases for parse_ninja_headers."""

    def test_individual_headers(self):
        headers = parse_ninja_headers(Headers({
            "ninja-app-id": " 0C5F2B4E-8A1D-4C3B-9E7F-1A2B3C4D5E6F ",
            "ninja-git-email": " Jane@Fabrikam.COM ",
            "ninja-git-name": "Jane",
            "ninja-app-publisher": "Fabrikam",
            "ninja-app-name": "Sales",
            "ninja-version": "3.2.0",
        }))

        assert headers.app_id == "0C5F2B4E-8A1D-4C3B-9E7F-1A2B3C4D5E6F"
        assert headers.git_user_email == "jane@fabrikam.com"
        assert headers.app_publisher == "Fabrikam"
        assert headers.client_version == "3.2.0"
        assert headers.app_version is None

    def test_payload_takes_precedence(self):
        payload = encode_payload({
            "gitUserEmail": "Joe@Contoso.com",
            "appPublisher": "Contoso",
            "ninjaVersion": "3.5.1",
        })

        headers = parse_ninja_headers(Headers({
            "Ninja-App-Id": "app-1",
            "Ninja-Header-Payload": payload,
            "Ninja-Git-Email": "ignored@fabrikam.com",
        }))

        assert headers.app_id == "app-1"
        assert headers.git_user_email == "joe@contoso.com"
        assert headers.app_publisher == "Contoso"
        assert headers.client_version == "3.5.1"

    def test_blank_values_are_absent(self):
        headers = parse_ninja_headers(Headers({"Ninja-Git-Email": "   "}))

        assert headers.git_user_email is None
        assert headers.app_id is None

    @pytest.mark.parametrize("payload", [
        "not base64 !!",
        base64.b64encode(b"not json").decode("ascii"),
        encode_payload(["a", "list"]),
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(ValidationError):
            parse_ninja_headers(Headers({"Ninja-Header-Payload": payload}))


class TestVersioning:
    """Test cases for the client version guard."""

    @pytest.mark.parametrize("left,right,expected", [
        ("3.1.0", "3.1.0", 0),
        ("3.1", "3.1.0", 0),
        ("3.10.0", "3.9.9", 1),
        ("2.9.9", "3.0.0", -1),
        ("3.1.0-beta", "3.1.0", 0),
    ])
    def test_compare_versions(self, left, right, expected):
        assert compare_versions(left, right) == expected

    def test_supported_version_passes(self):
        check_version("3.1.0", "3.1.0")
        check_version("4.0.0", "3.1.0")

    @pytest.mark.parametrize("version", [None, "", "3.0.9"])
    def test_outdated_or_missing_version(self, version):
        with pytest.raises(UpgradeRequired) as exc_info:
            check_version(version, "3.1.0")

        assert exc_info.value.status_code == 426
        assert exc_info.value.details["minimumVersion"] == "3.1.0"
