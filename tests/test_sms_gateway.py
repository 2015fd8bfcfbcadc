import json
import logging
from datetime import timedelta

import pytest
from requests.exceptions import ConnectTimeout
from sqlmodel import select
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from app.exceptions import DeliveryFailed
from app.infrastructure.audit.std_logger import StdAuditLogger
from app.infrastructure.sms.console_gateway import ConsoleSmsGateway
from app.infrastructure.sms.twilio_gateway import TwilioSmsGateway
from app.models import OTPCode, OtpPurpose, Role
from app.utils import hash_phone_number, utcnow

from conftest import build_otp_engine

PHONE = "+14155550123"


class FakeMessages:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def create(self, body, from_, to):
        if self.fail:
            raise TwilioException("carrier rejected")
        self.calls.append((body, from_, to))
        return type("Msg", (), {"sid": "SM123"})


class FakeTwilio:
    def __init__(self, fail=False):
        self.messages = FakeMessages(fail)


def test_twilio_gateway_sends():
    client = FakeTwilio()
    gw = TwilioSmsGateway(client=client, from_number="+15005550006")
    assert gw.send(PHONE, "code 123456") == "SM123"
    assert client.messages.calls == [("code 123456", "+15005550006", PHONE)]


def test_twilio_failure_becomes_delivery_failed():
    gw = TwilioSmsGateway(client=FakeTwilio(fail=True), from_number="+15005550006")
    with pytest.raises(DeliveryFailed) as exc:
        gw.send(PHONE, "code 123456")
    assert exc.value.status_code == 502


def test_console_gateway_logs_message(caplog):
    with caplog.at_level(logging.INFO):
        message_id = ConsoleSmsGateway().send(PHONE, "code 123456")
    assert message_id.startswith("console-")
    assert "code 123456" in caplog.text
    assert PHONE not in caplog.text


def test_audit_logger_hashes_phone(caplog):
    with caplog.at_level(logging.INFO):
        StdAuditLogger().log("login", phone=PHONE, user_id="u1", role="broker")
    line = caplog.records[-1].getMessage()
    entry = json.loads(line.split("AUDIT: ", 1)[1])
    assert entry["phone_hash"] == hash_phone_number(PHONE)
    assert entry["role"] == "broker"
    assert PHONE not in line


class TimingOutHttpClient(TwilioHttpClient):
    def request(self, *args, **kwargs):
        raise ConnectTimeout("connect timed out")


def unreachable_twilio_gateway():
    client = Client("ACtest", "secret", http_client=TimingOutHttpClient())
    return TwilioSmsGateway(client=client, from_number="+15005550006")


def test_twilio_transport_error_becomes_delivery_failed():
    with pytest.raises(DeliveryFailed) as exc:
        unreachable_twilio_gateway().send(PHONE, "code 123456")
    assert exc.value.details["reason"] == "transport"


def test_transport_error_caps_code_lifetime(session, guard):
    engine = build_otp_engine(session, unreachable_twilio_gateway(), guard)
    with pytest.raises(DeliveryFailed):
        engine.request(PHONE, Role.BROKER, OtpPurpose.REGISTRATION)
    rec = session.exec(select(OTPCode)).one()
    assert rec.expires_at <= utcnow() + timedelta(seconds=121)
