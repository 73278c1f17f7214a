"""
Payment initiation and verification through Paystack.

Initiation is checked in this order, and nothing is written before the
gateway has accepted the transaction:

1. per-actor rate limit
2. job id shape, job ownership
3. amount, currency, phone and channel
4. job state: payable status, not already paid, quote accepted
5. amount within the tolerance band around the quote
6. provider subaccount lookup (best effort)
7. gateway call (M-PESA charge or card checkout)
8. ledger row and job fields
"""
import logging

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, Forbidden, StateConflict, ValidationError
from extensions import payment_rate_limiter
from helpers import (
    format_amount, from_minor_units, generate_payment_reference, to_minor_units, utcnow,
)
from lifecycle import guarded_update, load_job, require_party, require_status, settle_payment
from models import (
    db, Job, Payment, PayoutMethod,
    PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING,
)
from paystack_service import get_paystack
from validators import coerce_number, is_kenyan_mobile, normalize_phone

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ('NGN', 'GHS', 'ZAR', 'USD', 'KES')
MOBILE_MONEY_CHANNELS = ('mpesa', 'mobile_money')
CHANNELS = MOBILE_MONEY_CHANNELS + ('card',)
MPESA_CURRENCY = 'KES'
MPESA_PROVIDER = 'mpesa'
CARD_CHANNELS = ['card', 'bank_transfer']
FALLBACK_EMAIL_DOMAIN = 'mobilefundi.com'
MAX_CLIENT_KEY_LENGTH = 128

GATEWAY_SUCCESS = 'success'
GATEWAY_FAILURES = ('failed', 'abandoned', 'reversed')


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_amount(value):
    amount = coerce_number(value, 'amount')
    minimum = current_app.config['MIN_PAYMENT_AMOUNT']
    maximum = current_app.config['MAX_PAYMENT_AMOUNT']
    if amount < minimum or amount > maximum:
        raise ValidationError(
            f'Amount must be between {format_amount(minimum)} and {format_amount(maximum)}',
            field='amount',
        )
    return round(amount, 2)


def resolve_currency(value):
    """A missing currency falls back to the configured default."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return current_app.config['DEFAULT_CURRENCY']
    if not isinstance(value, str) or value.strip().upper() not in SUPPORTED_CURRENCIES:
        raise ValidationError(
            f"currency must be one of: {', '.join(SUPPORTED_CURRENCIES)}", field='currency'
        )
    return value.strip().upper()


def resolve_channel(value):
    if value in (None, ''):
        return None
    if not isinstance(value, str) or value.strip().lower() not in CHANNELS:
        raise ValidationError(
            f"channel must be one of: {', '.join(CHANNELS)}", field='channel'
        )
    return value.strip().lower()


def amount_band(quote_total):
    """Inclusive (low, high) bounds accepted for a quote."""
    config = current_app.config
    low = max(quote_total * config['AMOUNT_LOWER_TOLERANCE'], config['MIN_PAYMENT_AMOUNT'])
    high = quote_total * config['AMOUNT_UPPER_TOLERANCE']
    return low, high


def check_amount_against_quote(amount, quote_total):
    if not quote_total or quote_total <= 0:
        raise ValidationError('This job has no valid quote to pay against', field='amount')
    low, high = amount_band(quote_total)
    if amount < low or amount > high:
        raise ValidationError(
            f'Amount must be between {format_amount(low)} and {format_amount(high)} '
            f'for a quote of {format_amount(quote_total)}',
            field='amount',
        )


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------
def resolve_payout_route(provider_id):
    """Subaccount code of the provider's default payout method, if any."""
    try:
        method = (
            PayoutMethod.query
            .filter_by(provider_id=provider_id, is_default=True)
            .filter(PayoutMethod.paystack_subaccount_id.isnot(None))
            .first()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Could not look up payout route for provider %s: %s", provider_id, exc)
        return None
    if method is None:
        logger.info("No default payout subaccount for provider %s", provider_id)
        return None
    return method.paystack_subaccount_id


# ---------------------------------------------------------------------------
# Initiation
# ---------------------------------------------------------------------------
def _replay(payment):
    meta = payment.meta or {}
    body = {
        'reference': payment.reference,
        'payment_method': payment.payment_method,
        'subaccount_routing': bool(payment.paystack_subaccount_id),
        'status': meta.get('gateway_status') or payment.status,
        'replayed': True,
    }
    if payment.payment_method == 'card':
        body['authorization_url'] = payment.authorization_url
        body['access_code'] = meta.get('access_code')
    else:
        body['display_text'] = meta.get('display_text')
        body['gateway_response'] = meta.get('gateway_response')
    return body


def initiate_payment(actor, job_id, amount, currency=None, phone=None, channel=None,
                     client_key=None):
    """
    Start a Paystack transaction for a job.

    Returns the body for the client: a checkout ``authorization_url`` for
    cards, or the STK push status and ``display_text`` for M-PESA.
    """
    payment_rate_limiter.check(actor.id)

    job = load_job(job_id)
    require_party(job, actor.id, 'customer')

    amount = validate_amount(amount)
    currency = resolve_currency(currency)
    channel = resolve_channel(channel)

    msisdn = None
    if phone not in (None, ''):
        msisdn = normalize_phone(phone)
        if msisdn is None:
            raise ValidationError('Invalid phone number format', field='phone')

    if client_key is not None:
        if not isinstance(client_key, str) or not 0 < len(client_key) <= MAX_CLIENT_KEY_LENGTH:
            raise ValidationError('Invalid idempotency key', field='idempotency_key')

    is_mpesa = channel in MOBILE_MONEY_CHANNELS or (
        channel is None and msisdn is not None and currency == MPESA_CURRENCY
    )
    if is_mpesa:
        if msisdn is None:
            raise ValidationError('A phone number is required for M-PESA payments', field='phone')
        if not is_kenyan_mobile(msisdn):
            raise ValidationError('M-PESA payments require a Kenyan phone number', field='phone')
        currency = MPESA_CURRENCY

    require_status(job, 'initiate_payment')
    if job.payment_status == PAYMENT_COMPLETED:
        raise StateConflict('This job has already been paid')
    if not job.quote_accepted:
        raise StateConflict('Quote must be accepted before payment')
    check_amount_against_quote(amount, job.quote_total)

    if client_key is not None:
        existing = Payment.query.filter_by(job_id=job.id, client_idempotency_key=client_key).first()
        if existing is not None:
            logger.info("Replaying payment %s for job %s", existing.reference, job.id)
            return _replay(existing)

    subaccount = resolve_payout_route(job.provider_id)
    reference = generate_payment_reference()
    idempotency_key = f'payment:{job.id}:{reference}'
    email = actor.email or f'customer_{actor.id}@{FALLBACK_EMAIL_DOMAIN}'
    amount_minor = to_minor_units(amount)

    metadata = {
        'job_id': job.id,
        'customer_id': actor.id,
        'provider_id': job.provider_id,
        'quote_total': job.quote_total,
    }
    gateway = get_paystack()
    if is_mpesa:
        metadata.update(payment_method='mpesa', phone_number=msisdn)
        payload = {
            'email': email,
            'amount': amount_minor,
            'currency': currency,
            'reference': reference,
            'mobile_money': {'phone': f'+{msisdn}', 'provider': MPESA_PROVIDER},
            'metadata': metadata,
        }
        if subaccount:
            payload['subaccount'] = subaccount
        response = gateway.charge(payload, idempotency_key=idempotency_key)
    else:
        metadata.update(payment_method='card')
        payload = {
            'email': email,
            'amount': amount_minor,
            'currency': currency,
            'reference': reference,
            'channels': CARD_CHANNELS,
            'metadata': metadata,
        }
        if subaccount:
            payload['subaccount'] = subaccount
        response = gateway.initialize_transaction(payload, idempotency_key=idempotency_key)

    data = response.data if isinstance(response.data, dict) else {}
    reference = data.get('reference') or reference
    method = 'mpesa' if is_mpesa or data.get('channel') in MOBILE_MONEY_CHANNELS else 'card'

    _record_payment(
        job, actor, amount, currency, method, reference,
        idempotency_key, subaccount, client_key, data, metadata, amount_minor,
    )

    body = {
        'reference': reference,
        'payment_method': method,
        'subaccount_routing': bool(subaccount),
        'status': data.get('status'),
    }
    if method == 'mpesa':
        body['display_text'] = data.get('display_text')
        body['gateway_response'] = data.get('gateway_response')
    else:
        body['authorization_url'] = data.get('authorization_url')
        body['access_code'] = data.get('access_code')

    logger.info(
        "Payment %s initiated for job %s: %s %s via %s",
        reference, job.id, currency, format_amount(amount), method,
    )
    return body


def _record_payment(job, actor, amount, currency, method, reference, idempotency_key,
                    subaccount, client_key, data, metadata, amount_minor):
    """Persist the gateway-accepted transaction. Failures are logged, not raised."""
    now = utcnow()
    transaction_id = data.get('id')
    payment = Payment(
        job_id=job.id,
        customer_id=actor.id,
        provider_id=job.provider_id,
        amount=amount,
        currency=currency,
        status=PAYMENT_PENDING,
        payment_method=method,
        reference=reference,
        paystack_transaction_id=str(transaction_id) if transaction_id is not None else None,
        paystack_subaccount_id=subaccount,
        idempotency_key=idempotency_key,
        client_idempotency_key=client_key,
        authorization_url=data.get('authorization_url'),
        meta=dict(
            metadata,
            amount_minor=amount_minor,
            paystack_channel=data.get('channel'),
            gateway_status=data.get('status'),
            access_code=data.get('access_code'),
            display_text=data.get('display_text'),
            gateway_response=data.get('gateway_response'),
        ),
    )
    try:
        db.session.add(payment)
        guarded_update(
            job.id,
            {
                'payment_status': PAYMENT_PENDING,
                'payment_reference': reference,
                'payment_method': method,
                'payment_amount': amount,
                'payment_initiated_at': now,
            },
            or_(Job.payment_status.is_(None), Job.payment_status != PAYMENT_COMPLETED),
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning(
            "Gateway accepted %s for job %s but recording it failed: %s", reference, job.id, exc
        )


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------
def verify_payment(actor, reference):
    """Ask Paystack for the outcome of ``reference`` and settle or fail it."""
    if not isinstance(reference, str) or not reference.strip():
        raise ValidationError('reference is required', field='reference')
    reference = reference.strip()

    payment = Payment.query.filter_by(reference=reference).first()
    if payment is None:
        raise NotFound('Payment not found')
    if actor.id not in (payment.customer_id, payment.provider_id):
        raise Forbidden('You are not a party to this payment')

    if payment.status != PAYMENT_COMPLETED:
        data = get_paystack().verify_transaction(reference).data or {}
        outcome = data.get('status')
        if outcome == GATEWAY_SUCCESS:
            paid = from_minor_units(data.get('amount')) or payment.amount
            payment = settle_payment(payment.job_id, reference, paid)
        elif outcome in GATEWAY_FAILURES:
            _mark_failed(payment, outcome)
        else:
            logger.info("Payment %s still %s at gateway", reference, outcome)

    job = db.session.get(Job, payment.job_id)
    return {
        'payment': payment.to_dict(),
        'job_status': job.status if job else None,
        'job_payment_status': job.payment_status if job else None,
    }


def _mark_failed(payment, outcome):
    payment.status = PAYMENT_FAILED
    payment.meta = dict(payment.meta or {}, gateway_status=outcome)
    guarded_update(
        payment.job_id,
        {'payment_status': PAYMENT_FAILED},
        Job.payment_reference == payment.reference,
        Job.payment_status != PAYMENT_COMPLETED,
    )
    db.session.commit()
    logger.warning("Payment %s for job %s %s at gateway", payment.reference, payment.job_id, outcome)
