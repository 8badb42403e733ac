from resilient_ai import cli
from resilient_ai.config import load_settings
from resilient_ai.llm.types import RawResponse
from resilient_ai.utils import parse_timestamp


def test_settings_merge_yaml_and_env(tmp_path, monkeypatch):
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text("retry:\n  max_attempts: 5\nai:\n  provider: perplexity\n", encoding="utf-8")
    monkeypatch.setenv("RESILIENT_AI_PROXY_URL", "https://proxy.example/api/ask")
    monkeypatch.delenv("RESILIENT_AI_PROVIDER", raising=False)

    cfg = load_settings(str(settings_file))

    assert cfg["retry"]["max_attempts"] == 5
    assert cfg["retry"]["multiplier"] == 2.0
    assert cfg["ai"]["provider"] == "perplexity"
    assert cfg["proxy"]["url"] == "https://proxy.example/api/ask"


def test_missing_settings_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("RESILIENT_AI_PROXY_URL", raising=False)
    cfg = load_settings(str(tmp_path / "absent.yaml"))
    assert cfg["json_repair"]["max_repair_rounds"] == 3
    assert cfg["proxy"]["url"] is None


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-01-01T00:00:00Z").year == 2026
    assert parse_timestamp(0).year == 1970
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(True) is None


def test_cli_ask_prints_json(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    monkeypatch.delenv("RESILIENT_AI_PROXY_URL", raising=False)
    monkeypatch.delenv("RESILIENT_AI_PROVIDER", raising=False)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)

    def fake_send(self, request, credentials, timeout):
        assert credentials == {"api_key": "g-key"}
        return RawResponse(text='{"b": 2}', provider="gemini", model="gemini-2.0-flash")

    monkeypatch.setattr("resilient_ai.llm.providers.gemini_provider.GeminiProvider.send", fake_send)

    code = cli.main(["--settings", str(tmp_path / "none.yaml"), "ask", "give me json", "--json"])

    out = capsys.readouterr()
    assert code == 0
    assert '"b": 2' in out.out


def test_cli_reports_configuration_errors(tmp_path, monkeypatch, capsys):
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY_GEMINI", "RESILIENT_AI_PROXY_URL", "RESILIENT_AI_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)

    code = cli.main(["--settings", str(tmp_path / "none.yaml"), "transport", "--provider", "gemini"])

    assert code == 1
    assert "no proxy URL" in capsys.readouterr().err


def test_cli_transport_reports_proxy_without_fetching_a_token(tmp_path, monkeypatch, capsys):
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY_GEMINI", "RESILIENT_AI_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RESILIENT_AI_PROXY_URL", "https://proxy.example/api/ask")
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)

    def no_network(self, force_refresh=False):
        raise AssertionError("transport must not acquire a bearer credential")

    monkeypatch.setattr("resilient_ai.credentials.CredentialManager.get_credential", no_network)

    code = cli.main(["--settings", str(tmp_path / "none.yaml"), "transport", "--provider", "gemini"])

    assert code == 0
    assert capsys.readouterr().out.strip() == "gemini: proxied"
