"""
Escrow payment tests for LawnMates
Tests checkout, confirmation, webhooks, payouts and refunds
"""
import json

import pytest
from flask import g
from sqlalchemy.exc import IntegrityError

from lawnmates import create_app, db
from lawnmates.errors import ConflictError, ExternalServiceError
from lawnmates.models import ActivityLog, Job, JobStatus, Payment, PaymentStatus, UserRole
from lawnmates.realtime.protocol import FrameHandler
from lawnmates.services import Actor, Transition
from lawnmates.services.stripe_gateway import PaymentGateway


class FailingGateway(PaymentGateway):
    """Development-mode gateway whose named operations fail like a provider outage"""

    def __init__(self, *failing):
        super().__init__()
        self.failing = set(failing)

    def create_intent(self, amount, metadata, customer_id=None, idempotency_key=None):
        if 'create_intent' in self.failing:
            raise ExternalServiceError('boom', status_code=503, operation='create_intent')
        return super().create_intent(amount, metadata, customer_id, idempotency_key)

    def create_transfer(self, amount, destination, transfer_group, idempotency_key):
        if 'create_transfer' in self.failing:
            raise ExternalServiceError('boom', operation='create_transfer')
        return super().create_transfer(amount, destination, transfer_group, idempotency_key)


def _escrow(job, intent_id='pi_dev_held'):
    payment = Payment(
        job_id=job.id,
        amount=job.price,
        status=PaymentStatus.ESCROW,
        stripe_payment_intent_id=intent_id,
    )
    db.session.add(payment)
    db.session.commit()
    return payment


def _webhook(client, event_type, obj):
    return client.post(
        '/api/webhooks/stripe',
        data=json.dumps({'type': event_type, 'data': {'object': obj}}),
        content_type='application/json',
    )


class TestCheckout:
    """Owner creates the escrow intent"""

    def test_create_payment_intent(self, client_for, posted_job, owner):
        response = client_for(owner).post('/api/create-payment-intent', json={
            'job_id': posted_job.id, 'amount': 4500,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['payment_intent_id'].startswith('pi_dev_')
        assert data['client_secret']
        assert data['payment']['status'] == 'pending'
        assert data['payment']['amount'] == 4500

    def test_amount_must_match_price(self, client_for, posted_job, owner):
        response = client_for(owner).post('/api/create-payment-intent', json={
            'job_id': posted_job.id, 'amount': 100,
        })

        assert response.status_code == 400
        body = response.get_json()
        assert body['category'] == 'payment'
        assert body['expected'] == 4500
        assert Payment.query.count() == 0

    def test_only_owner_pays(self, client_for, posted_job, landscaper):
        response = client_for(landscaper).post('/api/create-payment-intent', json={'job_id': posted_job.id})
        assert response.status_code == 403

    def test_repeat_checkout_refreshes_same_payment(self, client_for, posted_job, owner):
        c = client_for(owner)
        first = c.post('/api/create-payment-intent', json={'job_id': posted_job.id}).get_json()
        second = c.post('/api/create-payment-intent', json={'job_id': posted_job.id}).get_json()

        assert first['payment']['id'] == second['payment']['id']
        assert first['payment_intent_id'] != second['payment_intent_id']
        assert Payment.query.filter_by(job_id=posted_job.id).count() == 1

    def test_no_checkout_once_funds_held(self, client_for, posted_job, owner):
        _escrow(posted_job)
        response = client_for(owner).post('/api/create-payment-intent', json={'job_id': posted_job.id})
        assert response.status_code == 409

    def test_racing_checkout_loses_on_open_payment(self, services, posted_job, owner, monkeypatch):
        services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        # the second request read the job before the first one committed
        monkeypatch.setattr(services.payments, 'payment_in', lambda job_id, *statuses: None)

        with pytest.raises(ConflictError):
            services.payments.create_escrow(posted_job.id, Actor.from_user(owner))

        assert Payment.query.filter_by(job_id=posted_job.id).count() == 1

    def test_one_open_payment_per_job(self, posted_job):
        db.session.add_all([
            Payment(job_id=posted_job.id, amount=posted_job.price, status=PaymentStatus.PENDING),
            Payment(job_id=posted_job.id, amount=posted_job.price, status=PaymentStatus.ESCROW),
        ])
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_closed_payments_do_not_block_a_new_one(self, posted_job):
        db.session.add_all([
            Payment(job_id=posted_job.id, amount=posted_job.price, status=PaymentStatus.REFUNDED),
            Payment(job_id=posted_job.id, amount=posted_job.price, status=PaymentStatus.PENDING),
        ])
        db.session.commit()
        assert Payment.query.filter_by(job_id=posted_job.id).count() == 2


class TestAcceptIntent:
    """Accepting a job opens the escrow intent for the owner"""

    def test_accept_push_carries_no_client_secret(self, client_for, services, posted_job, owner, landscaper,
                                                 open_channel):
        # an unauthenticated socket may identify as anyone
        channel = open_channel()
        FrameHandler(services.registry).handle(channel, json.dumps({'type': 'identify', 'userId': owner.id}))

        client_for(landscaper).post(f'/api/jobs/{posted_job.id}/accept')

        frames = [json.loads(raw) for raw in channel.ws.sent]
        payment_frames = [f for f in frames if f.get('notificationType') == 'payment']
        assert len(payment_frames) == 1
        assert payment_frames[0]['data']['amount'] == posted_job.price
        assert 'clientSecret' not in payment_frames[0]['data']
        assert all('_secret_' not in raw for raw in channel.ws.sent)

    def test_owner_fetches_secret_through_checkout(self, client_for, posted_job, owner, landscaper):
        client_for(landscaper).post(f'/api/jobs/{posted_job.id}/accept')
        opened = Payment.query.filter_by(job_id=posted_job.id).one()

        data = client_for(owner).post('/api/create-payment-intent', json={'job_id': posted_job.id}).get_json()

        assert data['payment']['id'] == opened.id
        assert data['client_secret']


class TestConfirmation:

    def test_client_confirm_moves_to_escrow(self, client_for, services, posted_job, owner):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))

        response = client_for(owner).post('/api/payments/confirm', json={
            'payment_intent_id': payment.stripe_payment_intent_id,
        })

        assert response.status_code == 200
        assert response.get_json()['payment']['status'] == 'escrow'

    def test_confirm_is_idempotent(self, client_for, services, posted_job, owner, fetch):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        c = client_for(owner)

        for _ in range(2):
            response = c.post('/api/payments/confirm', json={
                'payment_intent_id': payment.stripe_payment_intent_id,
            })
            assert response.status_code == 200

        assert fetch(Payment, payment.id).status == PaymentStatus.ESCROW
        moves = ActivityLog.query.filter_by(entity_type='payment', entity_id=payment.id, action='escrow')
        assert moves.count() == 1

    def test_confirm_unknown_intent(self, client_for, owner):
        response = client_for(owner).post('/api/payments/confirm', json={'payment_intent_id': 'pi_missing'})
        assert response.status_code == 404


class TestWebhooks:

    def test_succeeded_event_holds_funds(self, client, services, posted_job, owner, fetch, open_channel):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        owner_channel = open_channel(owner)

        response = _webhook(client, 'payment_intent.succeeded', {'id': payment.stripe_payment_intent_id})

        assert response.status_code == 200
        assert response.get_json() == {'received': True}
        assert fetch(Payment, payment.id).status == PaymentStatus.ESCROW
        frames = [json.loads(f) for f in owner_channel.ws.sent]
        assert [f['notificationType'] for f in frames] == ['payment']
        assert frames[0]['data']['status'] == 'escrow'

    def test_duplicate_event_applies_once(self, client, services, posted_job, owner, open_channel):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        owner_channel = open_channel(owner)

        for _ in range(2):
            _webhook(client, 'payment_intent.succeeded', {'id': payment.stripe_payment_intent_id})

        assert len(owner_channel.ws.sent) == 1

    def test_failed_event_keeps_payment_pending(self, client, services, posted_job, owner, fetch, open_channel):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        owner_channel = open_channel(owner)

        _webhook(client, 'payment_intent.payment_failed', {
            'id': payment.stripe_payment_intent_id,
            'last_payment_error': {'message': 'Card declined'},
        })

        assert fetch(Payment, payment.id).status == PaymentStatus.PENDING
        frame = json.loads(owner_channel.ws.sent[0])
        assert frame['data']['reason'] == 'Card declined'

    def test_success_after_cancellation_is_refunded(self, client, services, posted_job, owner, fetch):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        services.jobs.apply(posted_job.id, Actor.from_user(owner), Transition.CANCEL)

        _webhook(client, 'payment_intent.succeeded', {'id': payment.stripe_payment_intent_id})

        payment = fetch(Payment, payment.id)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund_reference.startswith('re_dev_')

    def test_unknown_intent_acknowledged(self, client):
        response = _webhook(client, 'payment_intent.succeeded', {'id': 'pi_nobody'})
        assert response.status_code == 200

    def test_invalid_payload(self, client):
        response = client.post('/api/webhooks/stripe', data='not json', content_type='application/json')
        assert response.status_code == 400

    def test_live_key_without_signing_secret_refuses_unsigned_events(self):
        gateway = PaymentGateway(secret_key='sk_live_x', webhook_secret='')
        payload = json.dumps({'type': 'payment_intent.succeeded', 'data': {'object': {'id': 'pi_1'}}})

        with pytest.raises(ExternalServiceError) as excinfo:
            gateway.construct_event(payload, '')

        assert excinfo.value.status_code == 503

    def test_unsigned_events_rejected_over_http_with_live_key(self, services, client, posted_job, owner,
                                                             fetch, monkeypatch):
        payment, _ = services.payments.create_escrow(posted_job.id, Actor.from_user(owner))
        monkeypatch.setattr(services.gateway, 'secret_key', 'sk_live_x')

        response = _webhook(client, 'payment_intent.succeeded', {'id': payment.stripe_payment_intent_id})

        assert response.status_code == 503
        assert fetch(Payment, payment.id).status == PaymentStatus.PENDING


class TestRelease:

    def test_owner_releases_completed_job(self, client_for, job_factory, owner, landscaper, fetch):
        job = job_factory(status=JobStatus.COMPLETED, landscaper=landscaper)
        payment = _escrow(job)

        response = client_for(owner).post('/api/release-payment', json={'job_id': job.id})

        assert response.status_code == 200
        payment = fetch(Payment, payment.id)
        assert payment.status == PaymentStatus.RELEASED
        assert payment.stripe_transfer_id.startswith('tr_dev_')
        assert payment.released_at is not None

    def test_release_before_completion_rejected(self, client_for, job_factory, owner, landscaper, fetch):
        job = job_factory(status=JobStatus.IN_PROGRESS, landscaper=landscaper)
        payment = _escrow(job)

        response = client_for(owner).post('/api/release-payment', json={'job_id': job.id})

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'INVALID_STATE_TRANSITION'
        assert body['category'] == 'payment'
        assert fetch(Payment, payment.id).status == PaymentStatus.ESCROW

    def test_second_release_conflicts(self, client_for, job_factory, owner, landscaper):
        job = job_factory(status=JobStatus.COMPLETED, landscaper=landscaper)
        _escrow(job)
        c = client_for(owner)

        assert c.post('/api/release-payment', json={'job_id': job.id}).status_code == 200
        assert c.post('/api/release-payment', json={'job_id': job.id}).status_code == 409

    def test_landscaper_needs_payout_account(self, client_for, job_factory, owner, user_factory):
        unconnected = user_factory(UserRole.LANDSCAPER)
        job = job_factory(status=JobStatus.COMPLETED, landscaper=unconnected)
        _escrow(job)

        response = client_for(owner).post('/api/release-payment', json={'job_id': job.id})
        assert response.status_code == 400
        assert response.get_json()['category'] == 'payment'

    def test_landscaper_cannot_release(self, client_for, job_factory, landscaper):
        job = job_factory(status=JobStatus.COMPLETED, landscaper=landscaper)
        _escrow(job)
        response = client_for(landscaper).post('/api/release-payment', json={'job_id': job.id})
        assert response.status_code == 403


class TestRefunds:

    def test_admin_refunds_disputed_job(self, client_for, job_factory, admin, landscaper, fetch):
        job = job_factory(status=JobStatus.DISPUTED, landscaper=landscaper)
        payment = _escrow(job)

        response = client_for(admin).post('/api/refund-payment', json={'job_id': job.id})

        assert response.status_code == 200
        assert fetch(Payment, payment.id).status == PaymentStatus.REFUNDED

    def test_owner_cannot_refund(self, client_for, job_factory, owner, landscaper):
        job = job_factory(status=JobStatus.DISPUTED, landscaper=landscaper)
        _escrow(job)
        assert client_for(owner).post('/api/refund-payment', json={'job_id': job.id}).status_code == 403

    def test_refund_requires_closed_job(self, client_for, job_factory, admin, landscaper):
        job = job_factory(status=JobStatus.COMPLETED, landscaper=landscaper)
        _escrow(job)
        response = client_for(admin).post('/api/refund-payment', json={'job_id': job.id})
        assert response.status_code == 400

    def test_cancel_refunds_held_funds(self, services, posted_job, owner, fetch):
        payment = _escrow(posted_job)

        services.jobs.apply(posted_job.id, Actor.from_user(owner), Transition.CANCEL)

        assert fetch(Job, posted_job.id).status == JobStatus.CANCELLED
        assert fetch(Payment, payment.id).status == PaymentStatus.REFUNDED


class TestProviderFailures:
    """Provider outages roll the whole operation back"""

    @pytest.fixture
    def app(self):
        app = create_app('testing', gateway=FailingGateway('create_intent', 'create_transfer'))

        @app.before_request
        def _forget_cached_user():
            g.pop('_login_user', None)

        with app.app_context():
            db.create_all()
            yield app
            db.session.remove()
            db.drop_all()

    def test_payout_failure_keeps_escrow(self, client_for, job_factory, owner, landscaper, fetch):
        job = job_factory(status=JobStatus.COMPLETED, landscaper=landscaper)
        payment = _escrow(job)

        response = client_for(owner).post('/api/release-payment', json={'job_id': job.id})

        assert response.status_code == 502
        body = response.get_json()
        assert body['error'] == 'PAYOUT_FAILED'
        assert body['retryable'] is True
        assert fetch(Payment, payment.id).status == PaymentStatus.ESCROW

    def test_failed_intent_undoes_accept(self, client_for, posted_job, landscaper, owner, fetch, open_channel):
        owner_channel = open_channel(owner)

        response = client_for(landscaper).post(f'/api/jobs/{posted_job.id}/accept')

        assert response.status_code == 503
        assert response.get_json()['error'] == 'EXTERNAL_SERVICE_ERROR'
        job = fetch(Job, posted_job.id)
        assert job.status == JobStatus.POSTED
        assert job.landscaper_id is None
        assert Payment.query.count() == 0
        assert owner_channel.ws.sent == []
