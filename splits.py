"""
Paystack split groups: route one transaction across several subaccounts.
"""
import logging

from flask import current_app

from errors import ValidationError
from paystack_service import get_paystack
from validators import coerce_number

logger = logging.getLogger(__name__)

SPLIT_TYPES = ('percentage', 'flat')
BEARER_TYPES = ('account', 'subaccount', 'all-proportional')
MAX_NAME_LENGTH = 100


def _clean_str(value):
    return value.strip() if isinstance(value, str) else ''


def validate_split_group(data):
    """
    Validate a split group request

    Returns:
        dict: the normalised split definition
    """
    if not isinstance(data, dict):
        raise ValidationError('Invalid request body')

    name = _clean_str(data.get('name'))
    if not name:
        raise ValidationError('name is required', field='name')
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f'name must be {MAX_NAME_LENGTH} characters or less', field='name')

    split_type = _clean_str(data.get('type')).lower()
    if split_type not in SPLIT_TYPES:
        raise ValidationError("type must be 'percentage' or 'flat'", field='type')

    bearer_type = _clean_str(data.get('bearer_type')).lower() or 'account'
    if bearer_type not in BEARER_TYPES:
        raise ValidationError(
            f"bearer_type must be one of: {', '.join(BEARER_TYPES)}", field='bearer_type'
        )
    bearer_subaccount = _clean_str(data.get('bearer_subaccount')) or None
    if bearer_type == 'subaccount' and not bearer_subaccount:
        raise ValidationError(
            'bearer_subaccount is required when bearer_type is subaccount',
            field='bearer_subaccount',
        )

    entries = data.get('splits')
    if not isinstance(entries, list) or not entries:
        raise ValidationError('splits must be a non-empty list', field='splits')

    splits = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f'splits[{index}] must be an object', field='splits')
        subaccount = _clean_str(entry.get('subaccount'))
        if not subaccount:
            raise ValidationError(f'splits[{index}].subaccount is required', field='splits')
        share = coerce_number(entry.get('share'), f'splits[{index}].share')
        if share <= 0:
            raise ValidationError(f'splits[{index}].share must be greater than 0', field='splits')
        splits.append({'subaccount': subaccount, 'share': share})

    if split_type == 'percentage':
        total_share = sum(item['share'] for item in splits)
        if total_share > 100:
            raise ValidationError(
                f'Percentage shares add up to {total_share:g}, which is more than 100',
                field='splits',
            )

    return {
        'name': name,
        'type': split_type,
        'bearer_type': bearer_type,
        'bearer_subaccount': bearer_subaccount,
        'splits': splits,
    }


def create_split_group(actor_id, data):
    split = validate_split_group(data)
    payload = {
        'name': split['name'],
        'type': split['type'],
        'currency': current_app.config['SPLIT_CURRENCY'],
        'subaccounts': split['splits'],
        'bearer_type': split['bearer_type'],
    }
    if split['bearer_subaccount']:
        payload['bearer_subaccount'] = split['bearer_subaccount']

    response = get_paystack().create_split(payload)
    group = response.data or {}
    logger.info(
        "User %s created split group %s (%s, %d subaccounts)",
        actor_id, group.get('split_code'), split['type'], len(split['splits']),
    )
    return {
        'split': group,
        'split_code': group.get('split_code'),
        'message': response.message or 'Split group created',
    }


def list_split_groups(actor_id, active=None):
    params = {}
    if active is not None:
        params['active'] = 'true' if active else 'false'
    response = get_paystack().list_splits(params or None)
    groups = response.data if isinstance(response.data, list) else []
    logger.debug("User %s listed %d split groups", actor_id, len(groups))
    return {'splits': groups, 'count': len(groups)}
