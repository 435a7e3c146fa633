"""
Configure iFood API credentials for the sync engine
Stores merchant/client credentials (secret encrypted) and tests authentication
"""

import argparse
import logging
import os
import sys

from app_services.integration_service import parse_config_payload
from ifood_auth import TokenManager
from ifood_crypto import SecretCipher
from ifood_models import StateCell
from ifood_settings import SyncSettings
from logging_config import configure_logging
from sync_store import create_store

logger = logging.getLogger('configure_ifood')


def build_parser():
    parser = argparse.ArgumentParser(description='Store iFood integration credentials and test authentication')
    parser.add_argument('--merchant-id', default=os.environ.get('IFOOD_MERCHANT_ID'))
    parser.add_argument('--client-id', default=os.environ.get('IFOOD_CLIENT_ID'))
    parser.add_argument('--client-secret', default=os.environ.get('IFOOD_CLIENT_SECRET'),
                        help='Defaults to IFOOD_CLIENT_SECRET; kept if omitted on update')
    parser.add_argument('--authorization-code', default=None)
    parser.add_argument('--polling-interval', type=int, default=None, help='Seconds, 10-300')
    parser.add_argument('--inactive', action='store_true', help='Store the config without enabling polling')
    parser.add_argument('--skip-auth-test', action='store_true')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = SyncSettings.from_env()
    store = create_store(settings.database_url, products_table=settings.products_table)
    cipher = SecretCipher(settings.encryption_key)

    print("=" * 70)
    print("iFood API Configuration Tool")
    print("=" * 70)

    existing = store.get_config()
    payload = {
        'merchant_id': args.merchant_id or (existing.merchant_id if existing else None),
        'client_id': args.client_id or (existing.client_id if existing else None),
        'client_secret': args.client_secret,
        'polling_interval': args.polling_interval,
        'is_active': not args.inactive,
    }
    if args.authorization_code:
        payload['authorization_code'] = args.authorization_code

    config = parse_config_payload(payload=payload, existing=existing, cipher=cipher)
    store.save_config(config)

    print(f"\n✅ Configuration saved")
    print(f"   Merchant: {config.merchant_id}")
    print(f"   Client ID: {config.client_id}")
    print(f"   Client Secret: stored encrypted")
    print(f"   Polling interval: {config.polling_interval_seconds}s")
    print(f"   Active: {config.is_active}")

    if args.skip_auth_test:
        return 0

    print(f"\n🧪 Testing iFood API authentication...")
    token_manager = TokenManager(
        store, StateCell(), cipher,
        base_url=settings.base_url,
        timeout=settings.http_timeout,
        trust_env=settings.trust_env,
    )
    ok, error = token_manager.ensure_authenticated()
    if not ok:
        print("   ❌ Authentication failed!")
        print(f"      Error: {error}")
        return 1

    print("   ✅ Authentication successful!")
    print(f"   Token expires: {token_manager.current_config().token_expires_at}")
    print("\n🔄 If the sync server is running, it picks up the new config on the next")
    print("   POST /api/ifood/config or restart.")
    return 0


if __name__ == "__main__":
    configure_logging()
    try:
        sys.exit(main() or 0)
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        sys.exit(1)
    except Exception as e:
        logger.exception('Unexpected error')
        print(f"\n❌ Unexpected error: {e}")
        sys.exit(1)
