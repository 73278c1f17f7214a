"""
Job state machine, settlement and dispute tests
"""
import json

import pytest
from sqlalchemy import update

import lifecycle
from errors import Forbidden, NotFound, StateConflict, ValidationError
from models import db, Job, Payment


def add_payment(job, reference='MF_TEST_1', amount=1000.0, subaccount=None):
    payment = Payment(
        job_id=job.id,
        customer_id=job.customer_id,
        provider_id=job.provider_id,
        amount=amount,
        currency='KES',
        payment_method='mpesa',
        reference=reference,
        idempotency_key=f'payment:{job.id}:{reference}',
        paystack_subaccount_id=subaccount,
    )
    db.session.add(payment)
    db.session.commit()
    return payment


class TestOwnership:
    """Test party checks"""

    def test_load_job_rejects_malformed_id(self, app):
        with pytest.raises(ValidationError):
            lifecycle.load_job('not-a-uuid')

    def test_load_job_missing(self, app):
        with pytest.raises(NotFound):
            lifecycle.load_job('6f1c2f0e-8a43-4d53-9a3c-1f6a4a0b9d11')

    def test_require_party_returns_role(self, job, customer_id, provider_id):
        assert lifecycle.require_party(job, customer_id) == 'customer'
        assert lifecycle.require_party(job, provider_id) == 'provider'

    def test_stranger_is_forbidden(self, job, stranger_id):
        with pytest.raises(Forbidden):
            lifecycle.require_party(job, stranger_id)

    def test_wrong_role_is_forbidden(self, job, customer_id):
        with pytest.raises(Forbidden) as exc:
            lifecycle.require_party(job, customer_id, 'provider')
        assert 'provider' in exc.value.message


class TestTransitions:
    """Test compare-and-set status transitions"""

    def test_transition_moves_status(self, quoted_job):
        lifecycle.transition(quoted_job, 'start_work')
        db.session.commit()
        assert db.session.get(Job, quoted_job.id).status == 'in_progress'

    def test_transition_from_wrong_status(self, job):
        job.status = 'completed'
        db.session.commit()
        with pytest.raises(StateConflict) as exc:
            lifecycle.transition(job, 'start_work')
        assert 'completed' in exc.value.message

    def test_lost_race_raises_conflict(self, quoted_job):
        assert quoted_job.status == 'confirmed'
        # a concurrent writer cancels the row; the loaded object still says confirmed
        db.session.execute(
            update(Job).where(Job.id == quoted_job.id).values(status='cancelled')
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(StateConflict) as exc:
            lifecycle.transition(quoted_job, 'start_work')
        assert 'reload' in exc.value.message

    def test_extra_conditions_guard_the_update(self, quoted_job):
        with pytest.raises(StateConflict):
            lifecycle.transition(
                quoted_job, 'start_work', conditions=(Job.start_code_used.is_(True),)
            )
        db.session.refresh(quoted_job)
        assert quoted_job.status == 'confirmed'

    def test_every_event_has_known_statuses(self):
        from models import JOB_STATUSES
        for rule in lifecycle.TRANSITIONS.values():
            assert set(rule.allowed_from) <= set(JOB_STATUSES)
            assert rule.to is None or rule.to in JOB_STATUSES


class TestSettlement:
    """Test payment settlement and commission split"""

    def test_settles_job_and_ledger(self, payable_job):
        add_payment(payable_job)
        payment = lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)

        job = db.session.get(Job, payable_job.id)
        assert payment.status == 'completed'
        assert payment.completed_at is not None
        assert job.status == 'completed'
        assert job.payment_status == 'completed'
        assert job.payment_reference == 'MF_TEST_1'
        assert job.platform_commission_percent == 15.0
        assert job.platform_commission_amount == 150.0
        assert job.provider_payout == 850.0
        assert job.provider_payout_status == 'pending'
        assert job.is_partial_payment is False

    def test_subaccount_payments_are_routed(self, payable_job):
        add_payment(payable_job, subaccount='ACCT_x')
        lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)
        assert db.session.get(Job, payable_job.id).provider_payout_status == 'routed'

    def test_underpayment_is_flagged_partial(self, payable_job):
        add_payment(payable_job, amount=600.0)
        lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 600.0)
        job = db.session.get(Job, payable_job.id)
        assert job.is_partial_payment is True
        assert '600.00' in job.partial_payment_reason

    def test_settling_twice_is_idempotent(self, payable_job):
        add_payment(payable_job)
        first = lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)
        second = lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)
        assert first.id == second.id
        assert second.status == 'completed'

    def test_second_reference_becomes_duplicate(self, payable_job):
        add_payment(payable_job, reference='MF_TEST_1')
        add_payment(payable_job, reference='MF_TEST_2')
        lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)
        late = lifecycle.settle_payment(payable_job.id, 'MF_TEST_2', 1000.0)

        assert late.status == 'duplicate'
        completed = Payment.query.filter_by(job_id=payable_job.id, status='completed').count()
        assert completed == 1
        assert db.session.get(Job, payable_job.id).payment_reference == 'MF_TEST_1'

    def test_cannot_settle_disputed_job(self, payable_job):
        add_payment(payable_job)
        payable_job.status = 'disputed'
        db.session.commit()
        with pytest.raises(StateConflict):
            lifecycle.settle_payment(payable_job.id, 'MF_TEST_1', 1000.0)

    def test_unknown_reference(self, payable_job):
        with pytest.raises(NotFound):
            lifecycle.settle_payment(payable_job.id, 'MF_NOPE', 1000.0)

    def test_commission_split_rounds_to_cents(self):
        assert lifecycle.commission_split(333.33, 15) == (50.0, 283.33)


class TestDisputes:
    """Test dispute flagging"""

    def test_customer_flags_dispute(self, started_job, customer_id):
        job = lifecycle.flag_dispute(started_job.id, customer_id, 'Work left unfinished')
        assert job.status == 'disputed'
        assert job.dispute_flagged is True
        assert job.dispute_flagged_by == customer_id

    def test_pending_payment_is_disputed(self, payable_job, customer_id):
        payable_job.payment_status = 'pending'
        db.session.commit()
        job = lifecycle.flag_dispute(payable_job.id, customer_id, 'Charged twice')
        assert job.payment_status == 'disputed'

    def test_completed_payment_keeps_status(self, payable_job, customer_id):
        payable_job.status = 'completed'
        payable_job.payment_status = 'completed'
        db.session.commit()
        job = lifecycle.flag_dispute(payable_job.id, customer_id, 'Poor workmanship')
        assert job.status == 'disputed'
        assert job.payment_status == 'completed'

    def test_reason_required(self, started_job, provider_id):
        with pytest.raises(ValidationError):
            lifecycle.flag_dispute(started_job.id, provider_id, '   ')

    def test_pending_job_cannot_be_disputed(self, job, customer_id):
        with pytest.raises(StateConflict):
            lifecycle.flag_dispute(job.id, customer_id, 'Changed my mind')

    def test_stranger_cannot_dispute(self, started_job, stranger_id):
        with pytest.raises(Forbidden):
            lifecycle.flag_dispute(started_job.id, stranger_id, 'Not my job')

    def test_dispute_endpoint(self, client, started_job, provider_headers):
        response = client.post(
            f'/api/jobs/{started_job.id}/dispute',
            headers=provider_headers,
            json={'reason': 'Customer refuses to confirm completion'},
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['ok'] is True
        assert data['job']['status'] == 'disputed'
        assert data['job']['dispute']['flagged'] is True
