"""
Payment API routes for LawnMates.

Escrow checkout, client confirmation, payout release, refunds and the
Stripe webhook. The Stripe calls themselves live in PaymentGateway.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required

from lawnmates.errors import ValidationError
from lawnmates.extensions import limiter
from lawnmates.services import get_services
from lawnmates.utils import current_actor, get_json_body, require_int

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__)
webhook_bp = Blueprint("webhooks", __name__)


@payments_bp.route("/create-payment-intent", methods=["POST"])
@limiter.limit("10 per minute")
@login_required
def create_payment_intent():
    """
    Create (or refresh) the escrow intent for a job.

    POST /api/create-payment-intent
    Body: {"job_id": 1, "amount": 4500}
    """
    data = get_json_body()
    job_id = require_int(data, "job_id", minimum=1, category="payment")
    amount = require_int(data, "amount", required=False, category="payment")

    payment, client_secret = get_services().payments.create_escrow(job_id, current_actor(), amount)

    return jsonify({
        "client_secret": client_secret,
        "payment_intent_id": payment.stripe_payment_intent_id,
        "payment": payment.to_dict(),
    }), 201


@payments_bp.route("/payments/confirm", methods=["POST"])
@limiter.limit("10 per minute")
@login_required
def confirm_payment():
    """
    Client-side confirmation after the owner authorized the intent.

    POST /api/payments/confirm
    Body: {"payment_intent_id": "pi_..."}
    """
    data = get_json_body()
    intent_id = data.get("payment_intent_id")
    if not intent_id or not isinstance(intent_id, str):
        raise ValidationError("payment_intent_id is required", category="payment")

    payment = get_services().payments.confirm_from_client(intent_id, current_actor())
    return jsonify({"success": True, "payment": payment.to_dict()}), 200


@payments_bp.route("/release-payment", methods=["POST"])
@login_required
def release_payment():
    """
    Pay the landscaper of a completed job out of escrow.

    POST /api/release-payment
    Body: {"job_id": 1}
    """
    data = get_json_body()
    job_id = require_int(data, "job_id", minimum=1, category="payment")
    payment = get_services().payments.release_payment(job_id, current_actor())
    return jsonify({"message": "Payment released", "payment": payment.to_dict()}), 200


@payments_bp.route("/refund-payment", methods=["POST"])
@login_required
def refund_payment():
    """
    Refund the escrow of a cancelled or disputed job (admin).

    POST /api/refund-payment
    Body: {"job_id": 1}
    """
    data = get_json_body()
    job_id = require_int(data, "job_id", minimum=1, category="payment")
    payment = get_services().payments.refund_payment(job_id, current_actor())
    return jsonify({"message": "Payment refunded", "payment": payment.to_dict()}), 200


@webhook_bp.route("/stripe", methods=["POST"])
@limiter.exempt
def stripe_webhook():
    """
    Handle Stripe webhook events with signature verification.
    Events: payment_intent.succeeded, payment_intent.amount_capturable_updated,
            payment_intent.payment_failed, charge.refunded
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature", "")

    services = get_services()
    event = services.gateway.construct_event(payload, sig_header)
    event_type = services.payments.handle_webhook_event(event)
    logger.info("Stripe webhook %s handled", event_type)

    return jsonify({"received": True}), 200
