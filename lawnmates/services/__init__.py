"""
Domain services, wired once per application.

create_app() builds one Services container and stores it in
``app.extensions['lawnmates']``; route handlers, the websocket view and
CLI commands fetch it with get_services() instead of importing globals.
"""
from dataclasses import dataclass

from flask import current_app

from lawnmates.realtime import ChannelRegistry, Notifier
from lawnmates.services.messaging import MessagingService
from lawnmates.services.payments import PaymentCoordinator
from lawnmates.services.state_machine import Actor, JobStateMachine, Transition
from lawnmates.services.stripe_gateway import PaymentGateway
from lawnmates.services.verification import VerificationWorkflow

EXTENSION_KEY = 'lawnmates'


@dataclass
class Services:
    registry: ChannelRegistry
    notifier: Notifier
    gateway: PaymentGateway
    payments: PaymentCoordinator
    jobs: JobStateMachine
    verifications: VerificationWorkflow
    messaging: MessagingService


def build_services(config, registry=None, gateway=None):
    registry = registry or ChannelRegistry()
    notifier = Notifier(registry)
    gateway = gateway or PaymentGateway.from_config(config)
    payments = PaymentCoordinator(gateway, notifier)
    jobs = JobStateMachine(
        payments, notifier,
        allow_cancel_after_acceptance=config.get('ALLOW_CANCEL_AFTER_ACCEPTANCE', False),
    )
    verifications = VerificationWorkflow(
        jobs, payments, notifier,
        max_rejections=config.get('VERIFICATION_MAX_REJECTIONS', 2),
    )
    messaging = MessagingService(notifier, max_length=config.get('MESSAGE_MAX_LENGTH', 2000))
    return Services(
        registry=registry,
        notifier=notifier,
        gateway=gateway,
        payments=payments,
        jobs=jobs,
        verifications=verifications,
        messaging=messaging,
    )


def init_services(app, **overrides):
    services = build_services(app.config, **overrides)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app=None) -> Services:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]


__all__ = [
    'Actor',
    'Services',
    'Transition',
    'build_services',
    'get_services',
    'init_services',
]
