"""
Provider payout methods and their Paystack subaccounts.

Saving the method is the primary effect. Provisioning the subaccount is
best effort: if Paystack refuses or is down the method is still saved and
the response carries ``subaccount_error`` so the client can retry later.
"""
import logging

from flask import current_app
from sqlalchemy import update

from errors import UpstreamFailure, ServiceNotConfigured, ValidationError
from helpers import mask_value
from models import db, PayoutMethod
from paystack_service import get_paystack
from validators import is_kenyan_mobile, local_kenyan_number, normalize_phone

logger = logging.getLogger(__name__)

PAYOUT_TYPES = ('bank', 'mpesa', 'mobile_money', 'other')
MOBILE_TYPES = ('mpesa', 'mobile_money')
MPESA_SETTLEMENT_BANK = 'M-PESA'


def _clean_str(value):
    return value.strip() if isinstance(value, str) else ''


def validate_payout_method(data):
    if not isinstance(data, dict):
        raise ValidationError('Invalid request body')

    method_type = _clean_str(data.get('type')).lower()
    if method_type not in PAYOUT_TYPES:
        raise ValidationError('type must be: bank, mpesa, mobile_money, or other', field='type')

    account_name = _clean_str(data.get('account_name'))
    if len(account_name) < 2:
        raise ValidationError('account_name is required (min 2 characters)', field='account_name')

    account_number = _clean_str(data.get('account_number'))
    if len(account_number) < 3:
        raise ValidationError(
            'account_number is required (min 3 characters)', field='account_number'
        )

    bank_code = _clean_str(data.get('bank_code')) or None
    if method_type == 'bank' and not bank_code:
        raise ValidationError('bank_code is required for bank accounts', field='bank_code')

    if method_type in MOBILE_TYPES:
        msisdn = normalize_phone(account_number)
        if msisdn is None or not is_kenyan_mobile(msisdn):
            raise ValidationError(
                'account_number must be a valid Kenyan mobile number', field='account_number'
            )
        account_number = msisdn

    is_default = data.get('is_default', False)
    if not isinstance(is_default, bool):
        raise ValidationError('is_default must be true or false', field='is_default')

    return {
        'type': method_type,
        'label': _clean_str(data.get('label')) or None,
        'account_name': account_name,
        'account_number': account_number,
        'bank_code': bank_code,
        'country': (_clean_str(data.get('country')) or 'KE').upper()[:2],
        'is_default': is_default,
    }


def create_payout_method(actor_id, data):
    """
    Save a payout method for the calling provider and try to give it a subaccount.

    The first method a provider saves becomes the default. Marking a
    method as default clears the flag on the provider's other methods.
    """
    fields = validate_payout_method(data)

    has_any = db.session.query(PayoutMethod.id).filter_by(provider_id=actor_id).first() is not None
    if not has_any:
        fields['is_default'] = True

    if fields['is_default']:
        db.session.execute(
            update(PayoutMethod)
            .where(PayoutMethod.provider_id == actor_id, PayoutMethod.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )

    method = PayoutMethod(provider_id=actor_id, **fields)
    db.session.add(method)
    db.session.commit()
    logger.info(
        "Provider %s saved %s payout method %s (%s)%s",
        actor_id, method.type, method.id, mask_value(method.account_number),
        ' as default' if method.is_default else '',
    )

    error = provision_subaccount(method)
    result = {'payout_method': method.to_dict()}
    if error:
        result['subaccount_error'] = error
    return result


def _settlement_details(method):
    if method.type == 'bank':
        return method.bank_code, method.account_number
    if method.type in MOBILE_TYPES:
        return MPESA_SETTLEMENT_BANK, local_kenyan_number(method.account_number)
    return None, None


def provision_subaccount(method):
    """Create the Paystack subaccount for ``method``. Returns an error message or None."""
    if method.paystack_subaccount_id:
        return None

    settlement_bank, account_number = _settlement_details(method)
    if not settlement_bank:
        logger.info("Payout method %s (%s) has no settlement bank; no subaccount", method.id, method.type)
        return None

    payload = {
        'business_name': method.label or method.account_name,
        'settlement_bank': settlement_bank,
        'account_number': account_number,
        'percentage_charge': current_app.config['PLATFORM_COMMISSION_PERCENT'],
        'primary_contact_name': method.account_name,
        'metadata': {'provider_id': method.provider_id, 'payout_method_id': method.id},
    }
    try:
        response = get_paystack().create_subaccount(payload)
    except (UpstreamFailure, ServiceNotConfigured) as exc:
        logger.warning(
            "Subaccount provisioning failed for payout method %s: %s", method.id, exc.message
        )
        return exc.message

    code = (response.data or {}).get('subaccount_code')
    if not code:
        logger.warning("Paystack returned no subaccount_code for payout method %s", method.id)
        return 'Payment provider did not return a subaccount code'

    method.paystack_subaccount_id = code
    db.session.commit()
    logger.info("Payout method %s linked to subaccount %s", method.id, code)
    return None


def list_payout_methods(actor_id):
    methods = (
        PayoutMethod.query
        .filter_by(provider_id=actor_id)
        .order_by(PayoutMethod.is_default.desc(), PayoutMethod.created_at.desc())
        .all()
    )
    return [method.to_dict() for method in methods]


def default_payout_method(provider_id):
    return PayoutMethod.query.filter_by(provider_id=provider_id, is_default=True).first()
