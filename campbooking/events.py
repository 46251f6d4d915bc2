import json
import logging

import pika
from pika.exceptions import AMQPError

logger = logging.getLogger("campbooking.events")

EXCHANGE = "campbooking_events"


def publish_event(rabbitmq_url: str, routing_key: str, event: dict):
    if not rabbitmq_url:
        return
    try:
        params = pika.URLParameters(rabbitmq_url)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
            body = json.dumps(event, default=str)
            channel.basic_publish(exchange=EXCHANGE, routing_key=routing_key, body=body)
        finally:
            connection.close()
    except AMQPError:
        logger.exception("Could not publish %s to %s", event.get("type"), routing_key)


def enrollment_settled(intent, payment, outcome) -> dict:
    return {
        "type": "EnrollmentSettled",
        "payload": {
            "student_email": intent.student_email,
            "class_id": intent.class_id,
            "instructor_email": intent.instructor_email,
            "amount": payment.amount,
            "transaction_id": payment.transaction_id,
            "steps": {name: step["status"] for name, step in outcome.as_dict().items() if name != "ok"},
        },
    }


def class_status_changed(cls) -> dict:
    return {
        "type": "ClassStatusChanged",
        "payload": {"class_id": cls.id, "status": cls.status, "instructor_email": cls.instructor_email},
    }
