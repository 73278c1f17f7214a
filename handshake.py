"""
Start/end handshake codes.

The customer shows a start code that the provider enters on arrival; the
provider shows an end code that the customer enters when the work is done.
Only the hash of a code is authoritative. A plaintext copy may be kept so
the issuer can see the same code again until it expires, and is cleared
once the code is used.

Hashes are only ever written by compare-and-set: the first write requires
the column to be NULL, a rotation requires it to still hold the hash that
was read and the code to be unused.
"""
import logging
from collections import namedtuple
from datetime import timedelta

from flask import current_app
from sqlalchemy import and_

from codes import generate_code, hash_code, normalize_code, verify_code
from errors import InvalidCode, StateConflict, ValidationError
from helpers import as_utc, isoformat, utcnow
from lifecycle import (
    TRANSITIONS, load_job, refresh, require_party, require_status, transition, guarded_update,
)
from models import db, Job

logger = logging.getLogger(__name__)

CodeSlot = namedtuple('CodeSlot', [
    'kind', 'issuer', 'verifier', 'code', 'hash', 'used', 'used_at', 'expires',
    'issue_event', 'verify_event', 'timestamp',
])

START = CodeSlot(
    kind='start', issuer='customer', verifier='provider',
    code='start_code', hash='start_code_hash', used='start_code_used',
    used_at='start_code_used_at', expires='customer_code_expires_at',
    issue_event='issue_start_code', verify_event='start_work', timestamp='job_start_time',
)
END = CodeSlot(
    kind='end', issuer='provider', verifier='customer',
    code='end_code', hash='end_code_hash', used='end_code_used',
    used_at='end_code_used_at', expires='provider_code_expires_at',
    issue_event='issue_end_code', verify_event='finish_work', timestamp='job_end_time',
)

SLOTS_BY_KIND = {START.kind: START, END.kind: END}
SLOTS_BY_ISSUER = {START.issuer: START, END.issuer: END}
ISSUE_METHODS = ('ui', 'sms', 'email', 'push')


def _column(slot, name):
    return getattr(Job, getattr(slot, name))


def _store_plaintext():
    return bool(current_app.config.get('HANDSHAKE_STORE_PLAINTEXT'))


def _ttl():
    return timedelta(minutes=current_app.config['HANDSHAKE_CODE_TTL_MINUTES'])


def _require_issuable(job, slot):
    if getattr(job, slot.used):
        raise StateConflict(f'The {slot.kind} code for this job has already been used')
    require_status(job, slot.issue_event)
    if slot is START and not job.quote_accepted:
        raise StateConflict('The quote must be accepted before a start code can be generated')
    if slot is END and not job.start_code_used:
        raise StateConflict('The job must be started before an end code can be generated')


def _issued(job, slot, code, expires_at, method, regenerated):
    return {
        'job_id': job.id,
        'kind': slot.kind,
        'code': code,
        'expires_at': isoformat(expires_at),
        'method': method,
        'regenerated': regenerated,
    }


def issue_code(job_id, actor_id, role, method='ui'):
    """
    Return the display code for ``role`` on a job, creating or rotating it as needed.

    A still-valid code is returned unchanged. A legacy code without an
    expiry is returned once more and given one. Expired codes, codes whose
    plaintext no longer matches the stored hash, and hashes with no
    plaintext copy are replaced by a fresh code.
    """
    job = load_job(job_id)
    require_party(job, actor_id)
    slot = SLOTS_BY_ISSUER.get(role)
    if slot is None:
        raise ValidationError("role must be 'customer' or 'provider'", field='role')
    if method not in ISSUE_METHODS:
        method = 'ui'
    require_party(job, actor_id, slot.issuer)
    _require_issuable(job, slot)
    if method != 'ui':
        # delivery is handled outside this service
        logger.info("%s code for job %s requested for delivery via %s", slot.kind, job.id, method)

    now = utcnow()
    stored_hash = getattr(job, slot.hash)
    plaintext = getattr(job, slot.code) if _store_plaintext() else None
    expires_at = as_utc(getattr(job, slot.expires))

    if stored_hash and plaintext:
        if verify_code(stored_hash, plaintext):
            if expires_at is None:
                return _backfill_expiry(job, slot, stored_hash, plaintext, now + _ttl(), method)
            if now < expires_at:
                return _issued(job, slot, plaintext, expires_at, method, regenerated=False)
            logger.info("%s code for job %s expired at %s; rotating", slot.kind, job.id, expires_at)
        else:
            logger.warning(
                "Stored %s code for job %s does not match its hash; rotating", slot.kind, job.id
            )
    elif stored_hash:
        logger.info("No display copy of the %s code for job %s; rotating", slot.kind, job.id)

    return _rotate(job, slot, stored_hash, method)


def _backfill_expiry(job, slot, stored_hash, plaintext, expires_at, method):
    updated = guarded_update(
        job.id,
        {slot.expires: expires_at},
        _column(slot, 'expires').is_(None),
        _column(slot, 'hash') == stored_hash,
    )
    if not updated:
        db.session.rollback()
        raise StateConflict('The code was changed by another request. Please try again.')
    db.session.commit()
    logger.info("Backfilled expiry for legacy %s code on job %s", slot.kind, job.id)
    return _issued(job, slot, plaintext, expires_at, method, regenerated=False)


def _rotate(job, slot, previous_hash, method):
    code = generate_code(current_app.config['HANDSHAKE_CODE_LENGTH'])
    expires_at = utcnow() + _ttl()

    values = {slot.hash: hash_code(code), slot.expires: expires_at}
    if _store_plaintext():
        values[slot.code] = code

    hash_column = _column(slot, 'hash')
    if previous_hash is None:
        guard = hash_column.is_(None)
    else:
        guard = and_(hash_column == previous_hash, _column(slot, 'used').is_(False))

    allowed = Job.status.in_(TRANSITIONS[slot.issue_event].allowed_from)
    if not guarded_update(job.id, values, guard, allowed):
        db.session.rollback()
        job = refresh(job)
        winner = getattr(job, slot.code) if _store_plaintext() else None
        winner_expiry = as_utc(getattr(job, slot.expires))
        if (winner and not getattr(job, slot.used)
                and verify_code(getattr(job, slot.hash), winner)
                and winner_expiry and utcnow() < winner_expiry):
            return _issued(job, slot, winner, winner_expiry, method, regenerated=False)
        raise StateConflict('The code was changed by another request. Please try again.')

    db.session.commit()
    logger.info(
        "Issued %s code for job %s via %s (expires %s)",
        slot.kind, job.id, method, expires_at.isoformat(),
    )
    return _issued(job, slot, code, expires_at, method, regenerated=previous_hash is not None)


def verify(job_id, actor_id, kind, code):
    """
    Consume a start or end code.

    Start: provider only, moves the job to in_progress.
    End: customer only, moves the job to awaiting_payment.
    """
    job = load_job(job_id)
    require_party(job, actor_id)
    slot = SLOTS_BY_KIND.get(kind)
    if slot is None:
        raise ValidationError("kind must be 'start' or 'end'", field='kind')
    require_party(job, actor_id, slot.verifier)
    if not isinstance(code, str) or not normalize_code(code):
        raise ValidationError('code is required', field='code')

    stored_hash = getattr(job, slot.hash)
    if getattr(job, slot.used):
        raise InvalidCode(f'This {slot.kind} code has already been used', reason='used')
    require_status(job, slot.verify_event)
    if slot is END and not job.start_code_used:
        raise StateConflict('The job must be started before it can be finished')
    if not stored_hash:
        raise InvalidCode(f'No {slot.kind} code has been generated for this job', reason='missing')

    expires_at = as_utc(getattr(job, slot.expires))
    now = utcnow()
    if expires_at is not None and now >= expires_at:
        raise InvalidCode(
            f'This {slot.kind} code has expired. Ask for a new one.', reason='expired'
        )
    if not verify_code(stored_hash, code):
        logger.info("Wrong %s code entered for job %s by %s", slot.kind, job.id, actor_id)
        raise InvalidCode(f'Incorrect {slot.kind} code', reason='mismatch')

    changes = {slot.used: True, slot.used_at: now, slot.timestamp: now}
    if _store_plaintext():
        changes[slot.code] = None
    try:
        transition(
            job, slot.verify_event,
            conditions=(_column(slot, 'used').is_(False), _column(slot, 'hash') == stored_hash),
            **changes,
        )
    except StateConflict:
        job = refresh(job)
        if getattr(job, slot.used):
            raise InvalidCode(
                f'This {slot.kind} code has already been used', reason='used'
            ) from None
        raise
    db.session.commit()
    logger.info("Job %s %s code verified by %s", job.id, slot.kind, actor_id)
    return refresh(job)


def handshake_status(job_id, actor_id):
    job = load_job(job_id)
    require_party(job, actor_id)
    now = utcnow()

    def _slot_status(slot):
        expires_at = as_utc(getattr(job, slot.expires))
        return {
            'issued': getattr(job, slot.hash) is not None,
            'used': getattr(job, slot.used),
            'used_at': isoformat(getattr(job, slot.used_at)),
            'expires_at': isoformat(expires_at),
            'expired': bool(expires_at and now >= expires_at),
        }

    return {
        'job_id': job.id,
        'status': job.status,
        'start': _slot_status(START),
        'end': _slot_status(END),
        'job_start_time': isoformat(job.job_start_time),
        'job_end_time': isoformat(job.job_end_time),
    }


def generate_start_code(job_id, actor_id, method='ui'):
    return issue_code(job_id, actor_id, START.issuer, method)


def generate_end_code(job_id, actor_id, method='ui'):
    return issue_code(job_id, actor_id, END.issuer, method)


def verify_start_code(job_id, actor_id, code):
    return verify(job_id, actor_id, START.kind, code)


def verify_end_code(job_id, actor_id, code):
    return verify(job_id, actor_id, END.kind, code)
