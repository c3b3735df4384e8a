import json
import base64

from config import DEFAULT_CONFIG, EngineContext, load_config, token_expiry
from database import Database
from logger import LOGGER_NAME, setup_logger


def make_token(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"header.{payload}.signature"


class TestLoadConfig:

    def test_creates_default_file(self, tmp_path):
        path = tmp_path / "config.json"
        config = load_config(str(path))
        assert path.exists()
        assert config["store"]["bank_code"] == "ACB"

    def test_file_is_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"timing": {"poll_interval": 2.0}}))
        config = load_config(str(path))
        assert config["timing"]["poll_interval"] == 2.0
        assert config["timing"]["step_delay"] == DEFAULT_CONFIG["timing"]["step_delay"]

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POS_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("POS_WAREHOUSE_ID", "9")
        config = load_config(str(tmp_path / "config.json"))
        context = EngineContext.from_config(config)
        assert context.access_token == "env-token"
        assert context.warehouse_id == 9
        assert DEFAULT_CONFIG["api"]["access_token"] == ""


class TestEngineContext:

    def test_from_config_defaults(self):
        context = EngineContext.from_config(DEFAULT_CONFIG)
        assert context.review_debounce == 0.5
        assert context.step_delay == 1.0
        assert context.poll_interval == 5.0
        assert context.scan_dedup_window == 2.0
        assert context.error_display_seconds == 10.0
        assert context.pos_mode

    def test_token_expiry(self):
        token = make_token({"sub": "cashier", "exp": 1000})
        assert token_expiry(token) == 1000
        context = EngineContext(access_token=token)
        assert context.has_valid_token(now=500)
        assert not context.has_valid_token(now=1500)

    def test_token_without_expiry(self):
        assert token_expiry("opaque") is None
        assert EngineContext(access_token="opaque").has_valid_token()
        assert not EngineContext(access_token="").has_valid_token()

    def test_auth_headers(self):
        assert EngineContext(access_token="tok").auth_headers()["Authorization"] == "Bearer tok"
        assert "Authorization" not in EngineContext().auth_headers()


class TestDatabase:

    def test_key_value_roundtrip(self, tmp_path):
        db = Database(str(tmp_path / "pos.db"))
        db.set("fulfillmentMethod", "HOME_DELIVERY")
        db.set("fulfillmentMethod", "PICKUP_AT_STORE")
        db.set_json("cart", {"items": []})
        assert db.get("fulfillmentMethod") == "PICKUP_AT_STORE"
        assert db.get_json("cart") == {"items": []}
        assert db.keys() == ["cart", "fulfillmentMethod"]
        assert db.delete("cart")
        assert not db.delete("cart")
        assert db.get("cart", "missing") == "missing"
        db.close()

    def test_unreadable_json(self, tmp_path):
        db = Database(str(tmp_path / "pos.db"))
        db.set("cart", "{broken")
        assert db.get_json("cart", {}) == {}
        db.close()


def test_setup_logger_replaces_handlers(tmp_path):
    config = {"logging": {"file": str(tmp_path / "logs" / "pos.log"), "level": "DEBUG"}}
    logger = setup_logger(config)
    logger = setup_logger(config)
    assert logger.name == LOGGER_NAME
    assert len(logger.handlers) == 2
    assert (tmp_path / "logs").exists()
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
