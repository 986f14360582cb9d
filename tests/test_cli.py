from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from oneclick.__main__ import main, parse_event
from oneclick.constants import FormEvent

SAMPLE_RULES = Path(__file__).resolve().parents[1] / "config" / "sample_rules.yaml"


def test_parse_event():
    assert parse_event("loaded:new") == (FormEvent.ON_LOADED, {"isNew": True}, None)
    assert parse_event("Saved") == (FormEvent.ON_SAVED, {}, None)
    assert parse_event("field:System.State=Active") == (FormEvent.ON_FIELD_CHANGED, {}, ("System.State", "Active"))
    with pytest.raises(argparse.ArgumentTypeError):
        parse_event("exploded")


def test_simulation_runs_sample_rules(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    for key in ("ONECLICK_API_URL", "ONECLICK_USER_ID", "ONECLICK_TIMEZONE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ONECLICK_LOCAL_STORE_DIR", str(tmp_path / "store"))

    rc = main(
        [
            "--rules", str(SAMPLE_RULES),
            "--work-item-type", "Bug",
            "--project-id", "Fabrikam",
            "--field", "System.State=New",
            "--field", "System.AssignedTo=",
            "--field", "System.Tags=",
            "--field", "System.IterationPath=Fabrikam",
            "--field-type", "Microsoft.VSTS.Scheduling.DueDate=dateTime",
            "--iteration", "Fabrikam\\Sprint 3",
            "--user", "Jamie Reyes",
            "--event", "loaded:new",
            "--event", "field:System.State=Active",
            "--event", "saved",
            "--log-level", "WARNING",
        ]
    )

    result = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert result["lastError"] is None
    assert result["rules"] == ["Assign new bugs to me", "Move active bugs into the sprint", "Notify owner on save"]
    fields = result["fields"]
    assert fields["System.AssignedTo"] == "Jamie Reyes"
    assert fields["System.Tags"] == "triage; needs-repro"
    assert fields["System.State"] == "Active"
    assert fields["System.IterationPath"] == "Fabrikam\\Sprint 3"
    assert fields["Microsoft.VSTS.Scheduling.DueDate"].endswith("00:00:00+00:00")
    assert (tmp_path / "store" / "local-user" / "OneClick_Rules_Fabrikam_Bug.json").exists()


def test_simulation_without_rules_source_fails(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("ONECLICK_API_URL", "ONECLICK_USER_ID", "ONECLICK_TIMEZONE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ONECLICK_LOCAL_STORE_DIR", str(tmp_path / "store"))

    assert main(["--work-item-type", "Bug", "--project-id", "Fabrikam", "--event", "loaded"]) == 1
