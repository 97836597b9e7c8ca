import pytest

from fleet_compliance.config import settings
from fleet_compliance.errors import ConfigurationError
from fleet_compliance.services import expiry_detector


def test_missing_procedure_is_a_configuration_error(db):
    with pytest.raises(ConfigurationError) as exc:
        expiry_detector.refresh(db)
    assert "migration" in exc.value.message
    assert exc.value.code == "configuration_error"
    assert exc.value.status_code == 500


def test_check_reports_missing_procedure_without_raising(db):
    result = expiry_detector.check(db)
    assert result["exists"] is False
    assert result["working"] is False
    assert result["function"] == settings.expiry_function_name


def test_procedure_name_must_be_an_identifier(db, monkeypatch):
    monkeypatch.setattr(settings, "expiry_function_name", "x(); DROP TABLE notifications; --")
    with pytest.raises(ConfigurationError):
        expiry_detector.refresh(db)


def test_existing_procedure_runs(db, monkeypatch):
    # sqlite ships a handful of built-in functions callable with no arguments
    monkeypatch.setattr(settings, "expiry_function_name", "random")
    assert expiry_detector.refresh(db)["success"] is True
    assert expiry_detector.check(db)["working"] is True
