import os, json, logging
from datetime import datetime, timezone
from typing import Dict, Any, List

import boto3
from botocore.exceptions import ClientError

SEND_LOGS_TABLE = os.getenv("SEND_LOGS_TABLE_NAME")
SES_FROM_EMAIL = os.getenv("SES_FROM_EMAIL", "no-reply@example.com")
SMS_SENDER_ID = os.getenv("SMS_SENDER_ID", "SALON")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

SUBJECT = "Appointment reminder"
BODY = "Hi {client_name}, this is a reminder of your appointment with {professional_name} on {when}."

log = logging.getLogger("send-reminder")
log.setLevel(logging.INFO)
if not log.handlers:
    log.addHandler(logging.StreamHandler())

# created on first use so cold starts and tests do not need AWS credentials
_clients: Dict[str, Any] = {}
_tables: Dict[str, Any] = {}


def aws_client(name: str):
    if name not in _clients:
        _clients[name] = boto3.client(name, region_name=AWS_REGION)
    return _clients[name]


def sendlogs_table():
    if "sendlogs" not in _tables:
        _tables["sendlogs"] = boto3.resource("dynamodb", region_name=AWS_REGION).Table(SEND_LOGS_TABLE)
    return _tables["sendlogs"]


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def render(variables: Dict[str, Any]) -> str:
    start = variables.get("start_time")
    try:
        when = datetime.fromisoformat(start).strftime("%d/%m/%Y at %H:%M")
    except (TypeError, ValueError):
        when = "your scheduled time"
    return BODY.format(
        client_name=variables.get("client_name") or "there",
        professional_name=variables.get("professional_name") or "us",
        when=when,
    )


def put_sendlog_once(notification_id: str, item: Dict[str, Any]) -> bool:
    try:
        sendlogs_table().put_item(
            Item={"notification_id": notification_id, **item},
            # a failed attempt may be retried by SQS redelivery
            ConditionExpression="attribute_not_exists(notification_id) OR #s = :failed",
            ExpressionAttributeNames={"#s": "status"},
            ExpressionAttributeValues={":failed": "failed"},
        )
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] in ("ConditionalCheckFailedException",):
            return False
        raise


def send_email(to_addr: str, subject: str, body: str) -> str:
    resp = aws_client("ses").send_email(
        Source=SES_FROM_EMAIL,
        Destination={"ToAddresses": [to_addr]},
        Message={
            "Subject": {"Data": subject},
            "Body": {"Text": {"Data": body}},
        },
    )
    return resp["MessageId"]


def send_sms(phone_e164: str, body: str) -> str:
    resp = aws_client("sns").publish(PhoneNumber=phone_e164, Message=body, MessageAttributes={
        "AWS.SNS.SMS.SenderID": {"DataType": "String", "StringValue": SMS_SENDER_ID}
    })
    return resp["MessageId"]


def handler(event, context):
    records: List[Dict[str, Any]] = event.get("Records", [])
    delivered = 0
    for r in records:
        try:
            body = json.loads(r.get("body") or "{}")
        except json.JSONDecodeError:
            log.warning("Invalid JSON; skipping"); continue

        notif_id = body.get("notification_id")
        if not notif_id or not body.get("appointment_id"):
            log.warning("Missing notification_id or appointment_id; skipping"); continue

        created = put_sendlog_once(notif_id, {
            "appointment_id": body["appointment_id"],
            "tenant_id": body.get("tenant_id"),
            "type": body.get("type", "appointment.reminder"),
            "reminder_kind": body.get("reminder_kind"),
            "status": "processing",
            "attempts": 0,
            "created_at": utcnow_iso(),
            "ttl": int(datetime.now(timezone.utc).timestamp()) + 90*24*3600,
        })
        if not created:
            log.info(f"Duplicate notification_id {notif_id}; skip"); continue

        channels = body.get("channels") or []
        text = render(body.get("variables") or {})
        email = body.get("email")
        phone = body.get("phone_e164")

        provider_ids = {}
        try:
            if "email" in channels and email:
                provider_ids["email_msg_id"] = send_email(email, SUBJECT, text)
            if "sms" in channels and phone:
                provider_ids["sms_msg_id"] = send_sms(phone, text)
            unsupported = [c for c in channels if c not in ("email", "sms")]
            if unsupported:
                log.info(f"No provider for channels {unsupported}; notification {notif_id}")

            sendlogs_table().update_item(
                Key={"notification_id": notif_id},
                UpdateExpression="SET #s = :s, attempts = attempts + :one, provider = :p, sent_at = :t",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={":s": "sent" if provider_ids else "skipped",
                                           ":one": 1,
                                           ":p": provider_ids,
                                           ":t": utcnow_iso()}
            )
            if provider_ids:
                delivered += 1

        except ClientError as e:
            # SQS retries the message once we re-raise
            sendlogs_table().update_item(
                Key={"notification_id": notif_id},
                UpdateExpression="SET #s = :s, attempts = attempts + :one, last_error = :e",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={":s": "failed", ":one": 1, ":e": str(e)},
            )
            raise

    return {"status": "ok", "delivered": delivered}
