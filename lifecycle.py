"""
Job state machine.

Every status change goes through :func:`transition`, which performs a
conditional UPDATE on the expected current status and checks the affected
row count. Two concurrent requests can therefore never both move a job out
of the same state.

    pending/confirmed --accept_quote--> confirmed
    pending/confirmed --reject_quote--> cancelled
    pending/confirmed --start_work----> in_progress
    in_progress ------finish_work-----> awaiting_payment
    awaiting_payment/in_progress/completed --settle_payment--> completed
    confirmed/in_progress/awaiting_payment/completed --flag_dispute--> disputed
"""
import logging
from collections import namedtuple

from flask import current_app
from sqlalchemy import or_, update

from errors import Forbidden, NotFound, StateConflict, ValidationError
from helpers import utcnow
from models import (
    db, Job, Payment,
    JOB_PENDING, JOB_CONFIRMED, JOB_IN_PROGRESS, JOB_AWAITING_PAYMENT,
    JOB_COMPLETED, JOB_CANCELLED, JOB_DISPUTED,
    PAYMENT_COMPLETED, PAYMENT_DISPUTED, PAYMENT_DUPLICATE, PAYMENT_PENDING, PAYMENT_PROCESSING,
)
from validators import require_uuid

logger = logging.getLogger(__name__)

Transition = namedtuple('Transition', ['allowed_from', 'to', 'label'])

TRANSITIONS = {
    'submit_quote': Transition((JOB_PENDING, JOB_CONFIRMED), None, 'submit a quote'),
    'accept_quote': Transition((JOB_PENDING, JOB_CONFIRMED), JOB_CONFIRMED, 'accept the quote'),
    'reject_quote': Transition((JOB_PENDING, JOB_CONFIRMED), JOB_CANCELLED, 'reject the quote'),
    'issue_start_code': Transition((JOB_PENDING, JOB_CONFIRMED), None, 'generate a start code'),
    'start_work': Transition((JOB_PENDING, JOB_CONFIRMED), JOB_IN_PROGRESS, 'start the job'),
    'issue_end_code': Transition((JOB_IN_PROGRESS,), None, 'generate an end code'),
    'finish_work': Transition((JOB_IN_PROGRESS,), JOB_AWAITING_PAYMENT, 'finish the job'),
    'initiate_payment': Transition(
        (JOB_COMPLETED, JOB_IN_PROGRESS, JOB_AWAITING_PAYMENT), None, 'pay for the job'),
    'settle_payment': Transition(
        (JOB_AWAITING_PAYMENT, JOB_IN_PROGRESS, JOB_COMPLETED), JOB_COMPLETED, 'settle payment'),
    'flag_dispute': Transition(
        (JOB_CONFIRMED, JOB_IN_PROGRESS, JOB_AWAITING_PAYMENT, JOB_COMPLETED), JOB_DISPUTED,
        'open a dispute'),
}


def load_job(job_id):
    require_uuid(job_id, field='job_id', label='Job ID')
    job = db.session.get(Job, job_id)
    if job is None:
        raise NotFound('Job not found')
    return job


def require_party(job, actor_id, role=None):
    """
    Ensure ``actor_id`` is the job's customer or provider.

    Args:
        job (Job): the job being acted on
        actor_id (str): authenticated user id
        role (str): 'customer', 'provider', or None for either party

    Returns:
        str: the role the actor holds on this job
    """
    actual = job.role_of(actor_id)
    if actual is None:
        logger.warning("User %s attempted to act on job %s without being a party", actor_id, job.id)
        raise Forbidden('You are not a party to this job')
    if role is not None and actual != role:
        raise Forbidden(f'Only the {role} can perform this action')
    return actual


def require_status(job, event):
    rule = TRANSITIONS[event]
    if job.status not in rule.allowed_from:
        raise StateConflict(
            f'Cannot {rule.label} for job with status: {job.status}',
            status=job.status,
        )


def guarded_update(job_id, values, *conditions):
    """
    UPDATE jobs SET <values> WHERE id = :job_id AND <conditions>.

    Returns True when exactly one row changed. Does not commit.
    """
    stmt = (
        update(Job)
        .where(Job.id == job_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def refresh(job):
    db.session.refresh(job)
    return job


def transition(job, event, conditions=(), **changes):
    """
    Apply ``event`` to ``job`` with compare-and-set on its current status.

    Extra ``conditions`` narrow the WHERE clause further; ``changes`` are
    written in the same statement. Raises StateConflict if another request
    changed the job first. The caller commits.
    """
    rule = TRANSITIONS[event]
    require_status(job, event)

    values = dict(changes)
    if rule.to is not None:
        values['status'] = rule.to

    expected = job.status
    if not guarded_update(job.id, values, Job.status == expected, *conditions):
        db.session.rollback()
        logger.info("Lost race applying %s to job %s (expected status %s)", event, job.id, expected)
        raise StateConflict(
            'The job changed while your request was processed. Please reload and try again.'
        )
    logger.info("Job %s: %s (%s -> %s)", job.id, event, expected, rule.to or expected)
    return values


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------
def commission_split(total, percent):
    commission = round(total * percent / 100.0, 2)
    return commission, round(total - commission, 2)


def settle_payment(job_id, reference, amount, tip=0.0):
    """
    Record a confirmed gateway payment against its job.

    Idempotent per reference: settling an already completed ledger row
    returns it unchanged. A second, different reference for a job that is
    already paid is marked ``duplicate`` instead of completed, so a job
    never has two completed ledger rows.
    """
    payment = Payment.query.filter_by(reference=reference, job_id=job_id).first()
    if payment is None:
        raise NotFound('Payment not found')
    if payment.status == PAYMENT_COMPLETED:
        return payment

    if amount is None or amount <= 0:
        raise ValidationError('Settled amount must be positive')

    job = load_job(job_id)
    now = utcnow()
    tip = round(float(tip or 0.0), 2)
    total = round(float(amount) + tip, 2)
    percent = job.platform_commission_percent
    if percent is None:
        percent = current_app.config['PLATFORM_COMMISSION_PERCENT']
    commission, payout = commission_split(total, percent)

    quote_total = job.quote_total or 0.0
    is_partial = quote_total > 0 and float(amount) < quote_total
    partial_reason = None
    if is_partial:
        partial_reason = f'Paid {amount:.2f} of quoted {quote_total:.2f}'

    values = {
        'status': JOB_COMPLETED,
        'payment_status': PAYMENT_COMPLETED,
        'payment_reference': reference,
        'payment_method': payment.payment_method,
        'payment_amount': float(amount),
        'payment_tip': tip,
        'payment_total': total,
        'payment_completed_at': now,
        'platform_commission_percent': percent,
        'platform_commission_amount': commission,
        'provider_payout': payout,
        'provider_payout_status': 'routed' if payment.paystack_subaccount_id else 'pending',
        'is_partial_payment': is_partial,
        'partial_payment_reason': partial_reason,
    }
    unpaid = or_(Job.payment_status.is_(None), Job.payment_status != PAYMENT_COMPLETED)
    settled = guarded_update(
        job.id, values, Job.status.in_(TRANSITIONS['settle_payment'].allowed_from), unpaid
    )

    if not settled:
        db.session.rollback()
        job = refresh(job)
        if job.payment_status != PAYMENT_COMPLETED:
            raise StateConflict(
                f'Cannot settle payment for job with status: {job.status}', status=job.status
            )
        logger.error(
            "Job %s already settled by %s; marking %s as duplicate",
            job.id, job.payment_reference, reference,
        )
        payment.status = PAYMENT_DUPLICATE
        db.session.commit()
        return payment

    payment.status = PAYMENT_COMPLETED
    payment.completed_at = now
    db.session.commit()
    logger.info(
        "Settled job %s via %s: total=%.2f commission=%.2f payout=%.2f partial=%s",
        job.id, reference, total, commission, payout, is_partial,
    )
    return payment


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------
def flag_dispute(job_id, actor_id, reason):
    job = load_job(job_id)
    require_party(job, actor_id)

    reason = (reason or '').strip() if isinstance(reason, str) else ''
    if not reason:
        raise ValidationError('A reason is required to open a dispute', field='reason')
    if len(reason) > 2000:
        raise ValidationError('Dispute reason must be 2000 characters or less', field='reason')

    changes = {
        'dispute_flagged': True,
        'dispute_reason': reason,
        'dispute_flagged_at': utcnow(),
        'dispute_flagged_by': actor_id,
        'dispute_resolved': False,
    }
    # an in-flight payment is frozen with the dispute
    if job.payment_status in (PAYMENT_PENDING, PAYMENT_PROCESSING):
        changes['payment_status'] = PAYMENT_DISPUTED
    transition(job, 'flag_dispute', **changes)
    db.session.commit()
    logger.warning("Dispute opened on job %s by %s", job.id, actor_id)
    return refresh(job)
