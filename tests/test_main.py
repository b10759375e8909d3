import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import logging
import types

import pytest
import requests
import yaml

import main as cli
from datasources.http import FetchCancelled, RetryPolicy
from services.market_prices import PriceResolver


class DummyResp:
    def __init__(self, status, data=None):
        self.status_code = status
        self._data = data or []

    def json(self):
        return self._data


@pytest.fixture
def quiet_cli(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "init_app_paths", lambda: None)
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **k: None)
    monkeypatch.setattr(cli, "get_logger", logging.getLogger)
    monkeypatch.setattr(cli.signal, "signal", lambda *a, **k: None)
    config = tmp_path / "config.yaml"
    config.write_text(f"data:\n  arte_map: '{tmp_path / 'arte.json'}'\n")
    return config


def _install_session(monkeypatch, fake_get):
    seen = {}
    session = types.SimpleNamespace(get=fake_get)

    def from_config(cls, config, session_=None, cache=None, retry_policy=None):
        seen["retry_policy"] = retry_policy
        seen["cities"] = list(config["cities"])
        seen["city"] = config["city"]
        return cls(session=session, retry_policy=RetryPolicy(max_attempts=1, base_delay=0, jitter=0),
                   courtesy_delay=0, courtesy_jitter=0, cities=config["cities"])

    monkeypatch.setattr(PriceResolver, "from_config", classmethod(from_config))
    return seen


def test_prices_command(quiet_cli, monkeypatch, capsys):
    def fake_get(url, params=None, timeout=None):
        return DummyResp(200, [
            {"item_id": "T4_BAG", "city": "Lymhurst", "sell_price_min": 1500},
        ])

    _install_session(monkeypatch, fake_get)
    code = cli.main(["--config", str(quiet_cli), "prices", "t4_bag,T5_BAG", "--city", "Lymhurst"])
    out = capsys.readouterr().out
    assert code == 0
    assert "T4_BAG" in out and "1,500" in out and "Lymhurst" in out
    assert "T5_BAG" in out


def test_scan_command(quiet_cli, monkeypatch, tmp_path, capsys):
    recipes = tmp_path / "recipes.csv"
    recipes.write_text("T4_MAIN_SWORD,4,MAIN,SWORD,0\n")

    def fake_get(url, params=None, timeout=None):
        return DummyResp(200, [
            {"item_id": "T4_MAIN_SWORD", "city": "Martlock", "sell_price_min": 5000},
            {"item_id": "T4_METALBAR", "city": "Martlock", "sell_price_min": 20},
        ])

    _install_session(monkeypatch, fake_get)
    code = cli.main(["--config", str(quiet_cli), "scan", str(recipes)])
    assert code == 0
    assert "T4_MAIN_SWORD" in capsys.readouterr().out


def test_missing_recipes_file_exits_1(quiet_cli, monkeypatch, tmp_path):
    _install_session(monkeypatch, lambda url, params=None, timeout=None: DummyResp(200))
    assert cli.main(["--config", str(quiet_cli), "scan", str(tmp_path / "nope.csv")]) == 1


def test_cancel_exits_130(quiet_cli, monkeypatch):
    def cancelled(*a, **k):
        raise FetchCancelled("request cancelled")

    _install_session(monkeypatch, lambda url, params=None, timeout=None: DummyResp(200))
    monkeypatch.setattr(PriceResolver, "fetch_bulk_prices", cancelled)
    assert cli.main(["--config", str(quiet_cli), "prices", "T4_BAG"]) == 130


def test_bad_config_exits_2(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "init_app_paths", lambda: None)
    config = tmp_path / "config.yaml"
    config.write_text("server: [broken\n")
    assert cli.main(["--config", str(config), "prices", "T4_BAG"]) == 2


def test_snapshot_network_failure_exits_1(quiet_cli, monkeypatch):
    quiet_cli.write_text(quiet_cli.read_text() + "retry:\n  max_attempts: 1\n  base_delay_ms: 0\n  jitter_ms: 0\n")

    def fake_get(url, params=None, timeout=None):
        return DummyResp(200, [{"item_id": "T4_BAG", "city": "Martlock", "sell_price_min": 10}])

    def fake_post(url, json=None, timeout=None):
        raise requests.ConnectionError("down")

    _install_session(monkeypatch, fake_get)
    monkeypatch.setattr(cli.SnapshotUploader, "from_config", classmethod(
        lambda cls, config, session=None, retry_policy=None: cls(
            session=types.SimpleNamespace(post=fake_post), retry_policy=retry_policy,
            courtesy_delay=0, courtesy_jitter=0)))
    assert cli.main(["--config", str(quiet_cli), "snapshot", "T4_BAG"]) == 1


def test_non_numeric_config_value_exits_2(quiet_cli, monkeypatch, capsys):
    quiet_cli.write_text(quiet_cli.read_text() + "scan:\n  sale_tax_pct: abc\n")
    _install_session(monkeypatch, lambda url, params=None, timeout=None: DummyResp(200))
    assert cli.main(["--config", str(quiet_cli), "prices", "T4_BAG"]) == 2
    err = capsys.readouterr().err
    assert "Configuration error" in err and "scan.sale_tax_pct" in err


def test_retry_policy_comes_from_config(quiet_cli, monkeypatch):
    quiet_cli.write_text(quiet_cli.read_text() + "retry:\n  max_attempts: 7\n")
    seen = _install_session(monkeypatch, lambda url, params=None, timeout=None: DummyResp(200))
    assert cli.main(["--config", str(quiet_cli), "prices", "T4_BAG"]) == 0
    assert seen["retry_policy"].max_attempts == 7


def test_cities_override_picks_first_as_preferred(quiet_cli, monkeypatch):
    seen = _install_session(monkeypatch, lambda url, params=None, timeout=None: DummyResp(200))
    code = cli.main(["--config", str(quiet_cli), "prices", "T4_BAG", "--cities", "Thetford, Lymhurst"])
    assert code == 0
    assert seen["cities"] == ["Thetford", "Lymhurst"]
    assert seen["city"] == "Thetford"

    cli.main(["--config", str(quiet_cli), "prices", "T4_BAG",
              "--cities", "Thetford,Lymhurst", "--city", "Lymhurst"])
    assert seen["city"] == "Lymhurst"


def test_config_set_saves_and_show_prints(quiet_cli, capsys):
    assert cli.main(["--config", str(quiet_cli), "config", "set", "scan.tome_price", "2500"]) == 0
    assert yaml.safe_load(quiet_cli.read_text())["scan"]["tome_price"] == 2500

    capsys.readouterr()
    assert cli.main(["--config", str(quiet_cli), "config", "show"]) == 0
    assert yaml.safe_load(capsys.readouterr().out)["scan"]["tome_price"] == 2500


def test_config_set_rejects_invalid_value(quiet_cli):
    before = quiet_cli.read_text()
    assert cli.main(["--config", str(quiet_cli), "config", "set", "scan.listing_pct", "abc"]) == 2
    assert quiet_cli.read_text() == before
