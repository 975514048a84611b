import os
import unittest
from unittest import mock

from utils import cors
from utils.cors import _is_local_origin, _origin_matches, build_cors_headers


class DummyRequest:
    def __init__(self, headers=None):
        self.headers = headers or {}


class CorsTests(unittest.TestCase):
    def test_matches_with_trailing_slash_and_case(self):
        self.assertTrue(_origin_matches("https://crm.capittal.es", "https://CRM.capittal.es/"))

    def test_matches_wildcard_subdomain(self):
        self.assertTrue(_origin_matches("https://app.capittal.es", "https://*.capittal.es"))
        self.assertFalse(_origin_matches("https://capittal.es", "https://*.capittal.es"))

    def test_does_not_match_different_host(self):
        self.assertFalse(_origin_matches("https://capittal.es.evil.com", "https://*.capittal.es"))

    def test_scheme_and_port_are_enforced_when_configured(self):
        self.assertTrue(_origin_matches("https://crm.capittal.es:8443", "https://crm.capittal.es:8443"))
        self.assertFalse(_origin_matches("https://crm.capittal.es:8444", "https://crm.capittal.es:8443"))
        self.assertFalse(_origin_matches("http://crm.capittal.es", "https://crm.capittal.es"))

    def test_host_only_entry_matches_any_scheme(self):
        self.assertTrue(_origin_matches("http://capittal.es", "capittal.es"))
        self.assertTrue(_origin_matches("https://capittal.es", "capittal.es"))

    def test_configured_origins(self):
        with mock.patch.dict(os.environ, {"ALLOWED_ORIGINS": " https://crm.capittal.es, ,capittal.es "}):
            self.assertEqual(cors._configured_origins(), ["https://crm.capittal.es", "capittal.es"])
        with mock.patch.dict(os.environ, {"ALLOWED_ORIGINS": "https://crm.capittal.es,*"}):
            self.assertEqual(cors._configured_origins(), ["*"])

    def test_local_origin(self):
        self.assertTrue(_is_local_origin("http://localhost:5173"))
        self.assertTrue(_is_local_origin("https://127.0.0.1:8080"))
        self.assertFalse(_is_local_origin("https://capittal.es"))
        self.assertFalse(_is_local_origin(None))


class BuildCorsHeadersTests(unittest.TestCase):
    def _headers(self, origin, requested=""):
        headers = {"Origin": origin}
        if requested:
            headers["Access-Control-Request-Headers"] = requested
        return build_cors_headers(DummyRequest(headers), ["get", "POST", "GET"])

    def test_allowed_origin_is_echoed(self):
        with mock.patch.object(cors, "ALLOWED_ORIGINS", ["https://crm.capittal.es"]), mock.patch.object(
            cors, "ALLOW_CREDENTIALS", False
        ):
            headers = self._headers("https://crm.capittal.es", requested="x-request-id")
        self.assertEqual(headers["Access-Control-Allow-Origin"], "https://crm.capittal.es")
        self.assertEqual(headers["Access-Control-Allow-Methods"], "GET, POST, OPTIONS")
        self.assertIn("Authorization", headers["Access-Control-Allow-Headers"])
        self.assertIn("x-request-id", headers["Access-Control-Allow-Headers"])
        self.assertEqual(headers["Access-Control-Expose-Headers"], "Content-Disposition")

    def test_unknown_origin_gets_no_cors_headers(self):
        with mock.patch.object(cors, "ALLOWED_ORIGINS", ["https://crm.capittal.es"]), mock.patch.object(
            cors, "ALLOW_LOCALHOST", False
        ):
            headers = self._headers("https://otro.com")
        self.assertEqual(headers, {"Vary": "Origin"})

    def test_wildcard_without_credentials(self):
        with mock.patch.object(cors, "ALLOWED_ORIGINS", ["*"]), mock.patch.object(cors, "ALLOW_CREDENTIALS", False):
            headers = self._headers("https://otro.com")
        self.assertEqual(headers["Access-Control-Allow-Origin"], "*")
        self.assertNotIn("Access-Control-Allow-Credentials", headers)


if __name__ == "__main__":
    unittest.main()
