"""
Quote submission and customer response.

A provider prices the job once; submitting locks the quote. The customer
then accepts (job becomes confirmed) or rejects (job is cancelled).
"""
import logging

from flask import current_app

from errors import AlreadyLocked, StateConflict, ValidationError
from helpers import format_amount, isoformat, utcnow
from lifecycle import load_job, refresh, require_party, require_status, transition
from models import db, Job
from validators import coerce_number

logger = logging.getLogger(__name__)

MAX_BREAKDOWN_LENGTH = 2000


def _validate_quote(labor, materials, breakdown):
    labor = coerce_number(labor, 'labor')
    if labor <= 0:
        raise ValidationError('Labor cost must be greater than 0', field='labor')

    materials = coerce_number(0 if materials in (None, '') else materials, 'materials')
    if materials < 0:
        raise ValidationError('Materials cost cannot be negative', field='materials')

    if breakdown is None:
        breakdown = ''
    if not isinstance(breakdown, str):
        raise ValidationError('Breakdown must be text', field='breakdown')
    breakdown = breakdown.strip()
    if len(breakdown) > MAX_BREAKDOWN_LENGTH:
        raise ValidationError(
            f'Breakdown must be {MAX_BREAKDOWN_LENGTH} characters or less', field='breakdown'
        )

    total = round(labor + materials, 2)
    ceiling = current_app.config['QUOTE_CEILING']
    if total <= 0 or total > ceiling:
        raise ValidationError(
            f'Quote total must be between 0 and {format_amount(ceiling)}', field='total'
        )
    return round(labor, 2), round(materials, 2), breakdown or None, total


def submit_quote(job_id, actor_id, labor, materials=0, breakdown=None):
    job = load_job(job_id)
    require_party(job, actor_id, 'provider')
    labor, materials, breakdown, total = _validate_quote(labor, materials, breakdown)

    if job.quote_locked:
        raise AlreadyLocked()
    require_status(job, 'submit_quote')

    try:
        transition(
            job, 'submit_quote',
            conditions=(Job.quote_locked.is_(False),),
            quote_labor=labor,
            quote_materials=materials,
            quote_breakdown=breakdown,
            quote_total=total,
            quote_submitted_at=utcnow(),
            quote_locked=True,
            quote_accepted=False,
        )
    except StateConflict:
        job = refresh(job)
        if job.quote_locked:
            raise AlreadyLocked() from None
        raise
    db.session.commit()

    logger.info("Provider %s quoted %s for job %s", actor_id, format_amount(total), job.id)
    return refresh(job)


def respond_to_quote(job_id, actor_id, accept):
    job = load_job(job_id)
    require_party(job, actor_id, 'customer')
    if not isinstance(accept, bool):
        raise ValidationError('accepted must be true or false', field='accepted')

    if job.quote_total is None or not job.quote_locked:
        raise StateConflict('No quote has been submitted for this job yet')
    if job.quote_accepted:
        raise StateConflict('Quote has already been accepted')

    pending_quote = (Job.quote_accepted.is_(False), Job.quote_locked.is_(True))
    if accept:
        transition(
            job, 'accept_quote', conditions=pending_quote,
            quote_accepted=True, quote_accepted_at=utcnow(),
        )
        logger.info("Customer %s accepted quote on job %s", actor_id, job.id)
    else:
        transition(job, 'reject_quote', conditions=pending_quote)
        logger.info("Customer %s rejected quote on job %s; job cancelled", actor_id, job.id)
    db.session.commit()
    return refresh(job)


def quote_status(job_id, actor_id):
    job = load_job(job_id)
    require_party(job, actor_id)
    return {
        'job_id': job.id,
        'status': job.status,
        'submitted': job.quote_locked,
        'total': job.quote_total,
        'labor': job.quote_labor,
        'materials': job.quote_materials,
        'breakdown': job.quote_breakdown,
        'submitted_at': isoformat(job.quote_submitted_at),
        'accepted': job.quote_accepted,
        'locked': job.quote_locked,
    }
