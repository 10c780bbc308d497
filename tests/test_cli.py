import json

import pytest

from helmet_escalation import cli
from helmet_escalation.notifier import DeliveryError, DeliveryMetricsRegistry, DryRunNotifier


def test_settings_command_masks_secrets(monkeypatch, capsys) -> None:
    monkeypatch.setenv("HELMET_ESCALATION_NOTIFIER__AUTH_TOKEN", "super-secret")
    monkeypatch.setenv("HELMET_ESCALATION_NOTIFIER__FROM_NUMBER", "+15550001111")

    assert cli.main(["settings"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["notifier"]["auth_token"] == "***"
    assert payload["notifier"]["from_number"] == "+15550001111"
    assert "super-secret" not in json.dumps(payload)


def test_simulate_without_ack_places_call(capsys) -> None:
    exit_code = cli.main(["simulate", "--subject", "helmet-2", "--delay", "0.05", "--to", "98765 43210"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["canceled"] is False
    assert payload["fired"] is True
    assert payload["calls"] == ["+919876543210"]
    assert payload["stats"]["fired"] == 1


def test_simulate_with_ack_cancels_call(capsys) -> None:
    exit_code = cli.main(
        ["simulate", "--subject", "helmet-1", "--delay", "0.5", "--ack-after", "0.05"]
    )

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["canceled"] is True
    assert payload["fired"] is False
    assert payload["calls"] == []
    assert payload["stats"]["canceled"] == 1


def test_simulate_rejects_blank_subject(capsys) -> None:
    assert cli.main(["simulate", "--subject", "  ", "--delay", "1"]) == 2
    assert "subject_id" in capsys.readouterr().err


def test_notify_sms_prints_receipt(monkeypatch, capsys) -> None:
    notifier = DryRunNotifier(metrics=DeliveryMetricsRegistry())
    monkeypatch.setattr(cli, "build_notifier", lambda settings: notifier)

    assert cli.main(["notify", "sms", "--to", "98765 43210", "--body", "test"]) == 0

    receipt = json.loads(capsys.readouterr().out)
    assert receipt["channel"] == "sms"
    assert receipt["destination"] == "+919876543210"
    assert notifier.messages("sms")[0].payload == "test"


def test_notify_call_uses_configured_voice_url(monkeypatch, capsys) -> None:
    monkeypatch.setenv("HELMET_ESCALATION_NOTIFIER__BASE_URL", "https://helmet.example.com")
    notifier = DryRunNotifier(metrics=DeliveryMetricsRegistry())
    monkeypatch.setattr(cli, "build_notifier", lambda settings: notifier)

    assert cli.main(["notify", "call", "--to", "+15551234567"]) == 0

    assert notifier.messages("voice")[0].payload == "https://helmet.example.com/voice/alert"


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["notify", "sms", "--to", " ", "--body", "x"], 2),
        (["notify", "call", "--to", "+15551234567"], 1),
    ],
)
def test_notify_failures_return_error_codes(monkeypatch, argv, expected) -> None:
    notifier = DryRunNotifier(config={"fail_channels": ["voice"]}, metrics=DeliveryMetricsRegistry())
    monkeypatch.setattr(cli, "build_notifier", lambda settings: notifier)

    assert cli.main(argv) == expected


def test_delivery_error_is_reported(monkeypatch, capsys) -> None:
    class _Broken(DryRunNotifier):
        def send_immediate(self, destination, payload):
            raise DeliveryError("provider down", channel="sms")

    monkeypatch.setattr(cli, "build_notifier", lambda settings: _Broken(metrics=DeliveryMetricsRegistry()))

    assert cli.main(["notify", "sms", "--to", "+15551234567", "--body", "x"]) == 1
    assert "provider down" in capsys.readouterr().err
