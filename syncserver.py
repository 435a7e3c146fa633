"""
Flask server for the iFood order sync engine.

    gunicorn -c gunicorn_config.py "syncserver:create_app()"
"""

import logging
import os
import secrets

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from app_routes import ifood_routes
from ifood_api import IFoodOrderAPI
from ifood_auth import TokenManager
from ifood_crypto import SecretCipher
from ifood_http import IFoodHttpClient, RetryPolicy
from ifood_models import StateCell, utcnow
from ifood_settings import SyncSettings
from ifood_webhook import WebhookVerifier
from logging_config import configure_logging
from order_actions import PendingConfirmations
from order_sync import OrderSyncEngine
from product_mapping import ProductMappingResolver
from sync_events import SyncNotifier
from sync_scheduler import SyncScheduler
from sync_store import create_store

logger = logging.getLogger(__name__)

# Detect reverse proxy (Railway, Render, Heroku, etc.)
IS_BEHIND_PROXY = any(var in os.environ for var in [
    'RAILWAY_ENVIRONMENT', 'RAILWAY_PROJECT_ID',
    'RENDER', 'RENDER_SERVICE_ID',
    'DYNO', 'K_SERVICE',
])


def build_components(settings: SyncSettings, store=None, http_session=None, auth_session=None):
    """Wire the engine graph; returns a dict of the shared components."""
    if store is None:
        store = create_store(settings.database_url, products_table=settings.products_table)
    cipher = SecretCipher(settings.encryption_key)
    state_cell = StateCell()
    token_manager = TokenManager(
        store, state_cell, cipher,
        base_url=settings.base_url,
        timeout=settings.http_timeout,
        session=auth_session,
        trust_env=settings.trust_env,
    )
    http = IFoodHttpClient(
        token_manager,
        base_url=settings.base_url,
        timeout=settings.http_timeout,
        retry_policy=RetryPolicy(max_attempts=settings.max_retries + 1, delay=settings.retry_delay),
        session=http_session,
        trust_env=settings.trust_env,
    )
    api = IFoodOrderAPI(http)
    notifier = SyncNotifier()
    resolver = ProductMappingResolver(store)
    engine = OrderSyncEngine(
        api, store, resolver, notifier, state_cell,
        pending=PendingConfirmations(settings.async_confirm_timeout),
    )
    config = token_manager.current_config()
    scheduler = SyncScheduler(
        engine, token_manager, store, notifier, state_cell,
        interval_seconds=config.polling_interval_seconds if config else settings.polling_interval,
        events_polling=settings.events_polling,
    )
    webhook_verifier = WebhookVerifier(
        secret=settings.webhook_secret,
        token=settings.webhook_token,
        allow_unsigned=settings.webhook_allow_unsigned,
    )
    return {
        'store': store,
        'cipher': cipher,
        'token_manager': token_manager,
        'engine': engine,
        'scheduler': scheduler,
        'notifier': notifier,
        'resolver': resolver,
        'webhook_verifier': webhook_verifier,
    }


def create_app(settings: SyncSettings = None, store=None, start_scheduler: bool = True,
               http_session=None, auth_session=None) -> Flask:
    configure_logging()
    settings = settings or SyncSettings.from_env()

    app = Flask(__name__)
    if IS_BEHIND_PROXY:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)
        logger.info('ProxyFix enabled (detected reverse proxy)')
    app.secret_key = settings.secret_key or secrets.token_hex(32)

    components = build_components(settings, store=store, http_session=http_session, auth_session=auth_session)
    ifood_routes.register(app, **components)
    app.extensions['ifood_sync'] = components

    started_at = utcnow()

    @app.route('/api/health')
    def api_health():
        scheduler = components['scheduler']
        return jsonify({
            'status': 'ok',
            'started_at': started_at.isoformat(),
            'sync_running': scheduler.is_running,
            'webhook_mode': components['webhook_verifier'].mode,
        })

    if start_scheduler:
        components['scheduler'].start()
    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port, threaded=True)
