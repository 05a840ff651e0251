import os
import unittest
from unittest.mock import patch

from human_mcp.config import DEFAULT_ALLOWED_HOSTS, load_config, load_http_config, load_storage_config


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        self.assertEqual(config.transport.type, "stdio")
        self.assertIsNone(config.transport.http)
        self.assertFalse(config.transport.networked)
        self.assertEqual(config.log_level, "info")
        self.assertFalse(config.storage.is_configured)
        self.assertEqual(config.storage.upload_temp_dir, "/tmp/claude-uploads")

    def test_http_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            http = load_http_config()

        self.assertEqual(http.port, 3000)
        self.assertEqual(http.host, "0.0.0.0")
        self.assertEqual(http.session_mode, "stateful")
        self.assertFalse(http.stateless)
        self.assertTrue(http.enable_json_response)
        self.assertFalse(http.enable_sse_fallback)
        self.assertEqual((http.sse_paths.stream, http.sse_paths.message), ("/sse", "/messages"))
        self.assertEqual(http.session_idle_timeout, 0.0)
        self.assertTrue(http.security.enable_cors)
        self.assertEqual(http.security.cors_origins, ("*",))
        self.assertFalse(http.security.enable_dns_rebinding_protection)
        self.assertEqual(http.security.allowed_hosts, DEFAULT_ALLOWED_HOSTS)
        self.assertIsNone(http.security.secret)

    def test_http_from_environment(self):
        env = {
            "TRANSPORT_TYPE": "both",
            "PORT": "8080",
            "HTTP_SESSION_MODE": "Stateless",
            "HTTP_ENABLE_JSON_RESPONSE": "false",
            "HTTP_ENABLE_SSE_FALLBACK": "yes",
            "HTTP_SSE_STREAM_PATH": "/events",
            "HTTP_SESSION_IDLE_TIMEOUT": "300",
            "HTTP_CORS_ORIGINS": "https://a.example, https://b.example",
            "HTTP_DNS_REBINDING_ENABLED": "1",
            "HTTP_ALLOWED_HOSTS": "example.com",
            "MCP_SECRET": "token",
            "LOG_LEVEL": "warn",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()

        http = config.transport.http
        self.assertTrue(config.transport.networked)
        self.assertEqual(http.port, 8080)
        self.assertTrue(http.stateless)
        self.assertFalse(http.enable_json_response)
        self.assertTrue(http.enable_sse_fallback)
        self.assertEqual(http.sse_paths.stream, "/events")
        self.assertEqual(http.sse_paths.message, "/messages")
        self.assertEqual(http.session_idle_timeout, 300.0)
        self.assertEqual(http.security.cors_origins, ("https://a.example", "https://b.example"))
        self.assertTrue(http.security.enable_dns_rebinding_protection)
        self.assertEqual(http.security.allowed_hosts, ("example.com",))
        self.assertEqual(http.security.secret, "token")
        self.assertEqual(config.log_level, "warn")

    def test_http_port_wins_over_port(self):
        with patch.dict(os.environ, {"HTTP_PORT": "9000", "PORT": "8080"}, clear=True):
            self.assertEqual(load_http_config().port, 9000)

    def test_invalid_values_raise(self):
        for env in ({"TRANSPORT_TYPE": "carrier-pigeon"}, {"HTTP_PORT": "abc", "TRANSPORT_TYPE": "http"}):
            with self.subTest(env=env), patch.dict(os.environ, env, clear=True):
                with self.assertRaises(ValueError):
                    load_config()

    def test_storage_needs_all_variables(self):
        env = {
            "CLOUDFLARE_CDN_ACCESS_KEY": "ak",
            "CLOUDFLARE_CDN_SECRET_KEY": "sk",
            "CLOUDFLARE_CDN_ENDPOINT_URL": "https://r2.example",
            "CLOUDFLARE_CDN_BUCKET_NAME": "bucket",
        }
        with patch.dict(os.environ, env, clear=True):
            self.assertFalse(load_storage_config().is_configured)

        env["CLOUDFLARE_CDN_BASE_URL"] = "https://cdn.example/"
        with patch.dict(os.environ, env, clear=True):
            storage = load_storage_config()
        self.assertTrue(storage.is_configured)
        self.assertEqual(storage.base_url, "https://cdn.example")


if __name__ == "__main__":
    unittest.main()
