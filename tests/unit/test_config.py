"""
Unit tests for auction configuration.
"""

import json

import pytest

from openbid.core.config import AuctionConfig, load_config


class TestDefaults:
    def test_default_rules(self):
        config = AuctionConfig()
        assert config.duration == 604800
        assert config.extension_window == 600
        assert config.min_increment_percent == 5
        assert config.settlement_fee_percent == 2

    @pytest.mark.parametrize("winning,floor", [(0, 0), (1, 1), (20, 21), (100, 105), (1000, 1050), (999, 1048)])
    def test_increment_floor(self, winning, floor):
        assert AuctionConfig().increment_floor(winning) == floor

    def test_minimum_bid_above(self):
        assert AuctionConfig().minimum_bid_above(100) == 106
        assert AuctionConfig().minimum_bid_above(0) == 1

    @pytest.mark.parametrize("balance,payout", [(100, 98), (1, 0), (50, 49), (149, 146), (0, 0)])
    def test_settlement_payout(self, balance, payout):
        assert AuctionConfig().settlement_payout(balance) == payout

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            AuctionConfig(duration=0)
        with pytest.raises(ValueError):
            AuctionConfig(settlement_fee_percent=101)

    def test_ensure_dirs(self, tmp_path):
        config = AuctionConfig(data_dir=tmp_path / "d", log_dir=tmp_path / "l")
        config.ensure_dirs()
        assert (tmp_path / "d").is_dir()
        assert (tmp_path / "l").is_dir()


class TestLoadConfig:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        for name in ("DURATION", "EXTENSION_WINDOW", "MIN_INCREMENT_PERCENT",
                     "SETTLEMENT_FEE_PERCENT", "DATA_DIR", "LOG_DIR"):
            monkeypatch.delenv(f"OPENBID_{name}", raising=False)
        # Keep a stray .env in the working directory out of the picture
        monkeypatch.chdir(tmp_path)

    def test_defaults(self):
        assert load_config() == AuctionConfig()

    def test_from_file(self, tmp_path):
        path = tmp_path / "auction.json"
        path.write_text(json.dumps({"duration": 3600, "settlement_fee_percent": 5}))

        config = load_config(str(path))
        assert config.duration == 3600
        assert config.settlement_fee_percent == 5
        assert config.extension_window == 600

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "auction.json"
        path.write_text(json.dumps({"duration": 3600}))
        monkeypatch.setenv("OPENBID_DURATION", "7200")

        assert load_config(str(path)).duration == 7200

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("OPENBID_EXTENSION_WINDOW=120\n")
        assert load_config().extension_window == 120

    def test_invalid_file_values(self, tmp_path):
        path = tmp_path / "auction.json"
        path.write_text(json.dumps({"duration": -1}))
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "auction.json"
        path.write_text(json.dumps({"reserve_price": 10}))
        with pytest.raises(ValueError):
            load_config(str(path))
