import json

import pytest
from botocore.exceptions import ClientError

import send_reminder


class FakeTable:
    def __init__(self):
        self.items = {}
        self.updates = []

    def put_item(self, Item, ConditionExpression, **kwargs):
        existing = self.items.get(Item["notification_id"])
        if existing is not None and existing.get("status") != "failed":
            raise ClientError({"Error": {"Code": "ConditionalCheckFailedException", "Message": "exists"}}, "PutItem")
        self.items[Item["notification_id"]] = dict(Item)

    def update_item(self, Key, ExpressionAttributeValues, **kwargs):
        self.updates.append(ExpressionAttributeValues)
        self.items[Key["notification_id"]]["status"] = ExpressionAttributeValues[":s"]


class FakeSES:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send_email(self, **kwargs):
        if self.error:
            raise self.error
        self.sent.append(kwargs)
        return {"MessageId": "ses-1"}


class FakeSNS:
    def __init__(self):
        self.sent = []

    def publish(self, **kwargs):
        self.sent.append(kwargs)
        return {"MessageId": "sns-1"}


@pytest.fixture
def aws(monkeypatch):
    table, ses, sns = FakeTable(), FakeSES(), FakeSNS()
    monkeypatch.setattr(send_reminder, "_clients", {"ses": ses, "sns": sns})
    monkeypatch.setattr(send_reminder, "_tables", {"sendlogs": table})
    return table, ses, sns


def message(**overrides):
    body = {
        "notification_id": "rem_1",
        "type": "appointment.reminder",
        "reminder_kind": "first",
        "channels": ["email", "sms", "whatsapp"],
        "tenant_id": 1,
        "appointment_id": 10,
        "client_id": 3,
        "email": "maria@example.com",
        "phone_e164": "+5511999990000",
        "variables": {
            "client_name": "Maria Silva",
            "professional_name": "Ana",
            "start_time": "2030-01-07T10:00:00+00:00",
        },
    }
    body.update(overrides)
    return {"Records": [{"body": json.dumps(body)}]}


def test_delivers_email_and_sms(aws):
    table, ses, sns = aws

    result = send_reminder.handler(message(), None)

    assert result == {"status": "ok", "delivered": 1}
    assert ses.sent[0]["Destination"] == {"ToAddresses": ["maria@example.com"]}
    assert "07/01/2030 at 10:00" in ses.sent[0]["Message"]["Body"]["Text"]["Data"]
    assert sns.sent[0]["PhoneNumber"] == "+5511999990000"
    assert table.items["rem_1"]["status"] == "sent"
    assert table.updates[0][":p"] == {"email_msg_id": "ses-1", "sms_msg_id": "sns-1"}


def test_duplicate_delivery_is_skipped(aws):
    table, ses, sns = aws

    send_reminder.handler(message(), None)
    result = send_reminder.handler(message(), None)

    assert result["delivered"] == 0
    assert len(ses.sent) == 1


def test_channel_without_contact_is_skipped(aws):
    table, ses, sns = aws

    send_reminder.handler(message(channels=["whatsapp"]), None)

    assert ses.sent == [] and sns.sent == []
    assert table.items["rem_1"]["status"] == "skipped"


def test_invalid_records_are_ignored(aws):
    table, _, _ = aws
    event = {"Records": [{"body": "{not json"}, {"body": json.dumps({"type": "appointment.reminder"})}]}

    assert send_reminder.handler(event, None) == {"status": "ok", "delivered": 0}
    assert table.items == {}


def test_provider_error_is_logged_and_reraised(aws, monkeypatch):
    table, _, _ = aws
    error = ClientError({"Error": {"Code": "Throttling", "Message": "rate exceeded"}}, "SendEmail")
    send_reminder._clients["ses"] = FakeSES(error=error)

    with pytest.raises(ClientError):
        send_reminder.handler(message(channels=["email"]), None)

    assert table.items["rem_1"]["status"] == "failed"

    # SQS redelivery gets another attempt
    send_reminder._clients["ses"] = FakeSES()
    assert send_reminder.handler(message(channels=["email"]), None)["delivered"] == 1


def test_render_without_start_time():
    assert "your scheduled time" in send_reminder.render({"client_name": "Maria"})
