import json
import os
import sys
import tempfile
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from ecpoll.clients import build_clients  # noqa: E402
from ecpoll.config import load_config, parse_config  # noqa: E402
from ecpoll.poller import InvalidConfiguration, PollOptions  # noqa: E402


def _write(td: str, cfg: dict) -> str:
    path = os.path.join(td, "config.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg, f, ensure_ascii=False)
    return path


class TestConfigAndBuild(unittest.TestCase):
    def test_load_config_parses_all_sections(self) -> None:
        cfg = {
            "poll": {"timeout_seconds": 90, "interval_seconds": 2.5, "source_error_retries": 1},
            "twilio": {"account_sid_env": "TW_SID", "auth_token_env": "TW_TOKEN", "limit": 20},
            "inbox": {"imap_host": "imap.example.com", "address": "qa+agent@example.com"},
            "dns": {"doh_endpoint": "https://cloudflare-dns.com/dns-query"},
        }
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write(td, cfg))

        self.assertEqual(config.poll, PollOptions(timeout_seconds=90.0, interval_seconds=2.5, source_error_retries=1))
        assert config.twilio is not None
        self.assertEqual(config.twilio.account_sid_env, "TW_SID")
        self.assertEqual(config.twilio.limit, 20)
        assert config.inbox is not None
        self.assertEqual(config.inbox.imap_port, 993)
        self.assertEqual(config.inbox.user_env, "INBOX_USER")
        self.assertEqual(config.inbox.address, "qa+agent@example.com")
        self.assertEqual(config.dns.doh_endpoint, "https://cloudflare-dns.com/dns-query")

    def test_defaults_and_validation(self) -> None:
        config = parse_config({})
        self.assertEqual(config.poll, PollOptions())
        self.assertIsNone(config.twilio)
        self.assertIsNone(config.inbox)

        with self.assertRaises(InvalidConfiguration):
            parse_config({"poll": {"interval_seconds": 0}})
        with self.assertRaises(ValueError):
            parse_config({"inbox": {"imap_port": 993}})
        with self.assertRaises(ValueError):
            parse_config([])

    def test_build_clients_wires_sources_from_env(self) -> None:
        config = parse_config(
            {
                "poll": {"timeout_seconds": 30},
                "twilio": {},
                "inbox": {"imap_host": "imap.example.com"},
            }
        )
        env = {"TWILIO_ACCOUNT_SID": "AC1", "TWILIO_AUTH_TOKEN": "t", "INBOX_USER": "qa@example.com", "INBOX_PASSWORD": "p"}
        os.environ.update(env)
        try:
            clients = build_clients(config)
        finally:
            for k in env:
                os.environ.pop(k, None)

        assert clients.call_verifier is not None
        self.assertEqual(clients.call_verifier.options.timeout_seconds, 30.0)
        assert clients.inbox is not None
        self.assertEqual(clients.inbox.email_address, "qa@example.com")
        self.assertEqual(clients.resolver.endpoint, "https://dns.google/resolve")

    def test_build_clients_skips_sources_without_credentials(self) -> None:
        config = parse_config({"twilio": {"account_sid_env": "ECPOLL_TEST_UNSET_SID"}})
        with self.assertLogs("ecpoll.clients", level="WARNING") as logs:
            clients = build_clients(config)
        self.assertIsNone(clients.call_verifier)
        self.assertIn("twilio credentials missing", "\n".join(logs.output))
