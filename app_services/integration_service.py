"""iFood integration service helpers."""

from dataclasses import replace
from datetime import timedelta

from ifood_errors import ConfigurationError
from ifood_models import IntegrationConfig, clamp_polling_interval, isoformat


def build_status_payload(*, state, scheduler, notifier, webhook_verifier, pending):
    """Build response payload for /api/ifood/status."""
    config = state.config
    return {
        'success': True,
        'configured': config is not None,
        'active': bool(config and config.is_active),
        'merchant_id': config.merchant_id if config else None,
        'authenticated': state.authenticated,
        'auth_error': state.auth_error,
        'token_expires_at': isoformat(config.token_expires_at) if config else None,
        'last_sync_at': isoformat(state.last_sync_at),
        'last_sync_error': state.last_sync_error,
        'polling_interval': scheduler.interval,
        'polling': {
            'running': scheduler.is_running,
            'syncing': scheduler.is_syncing,
            'events_polling': scheduler.events_polling,
        },
        'pending_actions': [entry.to_dict() for entry in pending.snapshot()],
        'webhook_mode': webhook_verifier.mode,
        'realtime_clients': notifier.client_count,
    }


def build_stats_payload(*, orders, mappings, catalog_products, catalog_error, state, now):
    """Build response payload for /api/ifood/stats.

    Day, week and month windows start at UTC midnight of ``now``.
    ``catalog_products`` is None when the catalog could not be fetched.
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=30)

    def created_since(start):
        return sum(1 for order in orders if order.created_at is not None and order.created_at >= start)

    mapped = len(mappings)
    catalog_count = len(catalog_products) if catalog_products is not None else 0
    return {
        'success': True,
        'stats': {
            'total_orders': len(orders),
            'orders_today': created_since(today),
            'orders_this_week': created_since(week_ago),
            'orders_this_month': created_since(month_ago),
            'orders_with_unmapped_items': sum(1 for order in orders if order.has_unmapped_items),
            'mapped_products': mapped,
            'catalog_products': catalog_count,
            'unmapped_products': max(0, catalog_count - mapped),
            'catalog_error': catalog_error,
            'authenticated': state.authenticated,
            'last_sync_at': isoformat(state.last_sync_at),
        },
    }


def build_config_payload(*, state):
    """Build response payload for GET /api/ifood/config (secret never echoed)."""
    config = state.config
    return {
        'success': True,
        'configured': config is not None,
        'config': config.public_dict() if config else None,
    }


def parse_config_payload(*, payload, existing, cipher):
    """Validate a POST /api/ifood/config body into an IntegrationConfig.

    The client secret is required when creating the integration and kept
    from the stored row when an update omits it. Changing merchant or client
    drops the cached tokens.
    """
    if not isinstance(payload, dict):
        raise ConfigurationError('Request body must be a JSON object')

    merchant_id = str(payload.get('merchant_id') or payload.get('merchantId') or '').strip()
    client_id = str(payload.get('client_id') or payload.get('clientId') or '').strip()
    client_secret = str(payload.get('client_secret') or payload.get('clientSecret') or '').strip()
    if not merchant_id:
        raise ConfigurationError('merchant_id is required')
    if not client_id:
        raise ConfigurationError('client_id is required')

    if client_secret:
        secret_encrypted = cipher.encrypt(client_secret)
    elif existing is not None and existing.client_secret_encrypted:
        secret_encrypted = existing.client_secret_encrypted
    else:
        raise ConfigurationError('client_secret is required')

    interval_raw = payload.get('polling_interval', payload.get('pollingIntervalSeconds'))
    if interval_raw is None:
        interval = existing.polling_interval_seconds if existing else clamp_polling_interval(None)
    else:
        interval = clamp_polling_interval(interval_raw)

    is_active = payload.get('is_active', payload.get('isActive'))
    if is_active is None:
        is_active = existing.is_active if existing else True

    authorization_code = payload.get('authorization_code', payload.get('authorizationCode'))
    verifier = payload.get('authorization_code_verifier', payload.get('authorizationCodeVerifier'))

    if existing is None:
        return IntegrationConfig(
            merchant_id=merchant_id,
            client_id=client_id,
            client_secret_encrypted=secret_encrypted,
            authorization_code=authorization_code or None,
            authorization_code_verifier=verifier or None,
            polling_interval_seconds=interval,
            is_active=bool(is_active),
        )

    credentials_changed = (
        merchant_id != existing.merchant_id
        or client_id != existing.client_id
        or bool(client_secret)
        or authorization_code is not None
    )
    updated = replace(
        existing,
        merchant_id=merchant_id,
        client_id=client_id,
        client_secret_encrypted=secret_encrypted,
        authorization_code=(authorization_code or None) if authorization_code is not None else existing.authorization_code,
        authorization_code_verifier=(verifier or None) if verifier is not None else existing.authorization_code_verifier,
        polling_interval_seconds=interval,
        is_active=bool(is_active),
    )
    if credentials_changed:
        updated = replace(updated, access_token=None, token_expires_at=None, refresh_token=None)
    return updated
