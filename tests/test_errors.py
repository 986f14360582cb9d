import json
import logging
from pathlib import Path

from oneclick.core import errors


def test_safe_json_dump_atomic_writes(tmp_path: Path):
    path = tmp_path / "nested" / "payload.json"
    payload = {"cacheStamp": 3, "rules": []}
    logger = logging.getLogger("test_errors")

    assert errors.safe_json_dump_atomic(path, payload, logger=logger) is True
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == payload


def test_safe_json_dump_atomic_does_not_corrupt_on_failure(tmp_path: Path, monkeypatch, caplog):
    path = tmp_path / "payload.json"
    path.write_text(json.dumps({"stable": True}), encoding="utf-8")
    logger = logging.getLogger("test_errors")

    def _boom(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(errors.json, "dump", _boom)
    caplog.set_level(logging.ERROR)

    ok = errors.safe_json_dump_atomic(path, {"new": "data"}, logger=logger)
    assert ok is False

    # File should remain uncorrupted (original content)
    assert json.loads(path.read_text(encoding="utf-8")) == {"stable": True}
    assert list(tmp_path.iterdir()) == [path]

    # Verify we logged the failure
    assert any("JSON atomic write failed" in rec.message for rec in caplog.records)


def test_safe_json_load_returns_default(tmp_path: Path, caplog):
    logger = logging.getLogger("test_errors")
    assert errors.safe_json_load(tmp_path / "missing.json", {"empty": True}) == {"empty": True}

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    caplog.set_level(logging.ERROR)
    assert errors.safe_json_load(broken, None, logger=logger, context={"key": "k"}) is None
    assert any("JSON load failed" in rec.message and "key=k" in rec.message for rec in caplog.records)


def test_error_types_carry_context():
    fetch = errors.CacheFetchError("Bug", "Fabrikam", "timeout")
    assert isinstance(fetch, errors.OneClickError)
    assert "Bug" in str(fetch) and "timeout" in str(fetch)

    action = errors.ActionExecutionError("Save work item", "rejected")
    assert str(action) == "Save work item: rejected"
    generic = errors.ActionError.from_exception("Notify", ValueError())
    assert generic == errors.ActionError(action_name="Notify", message="ValueError")
