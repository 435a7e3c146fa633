"""iFood integration route registrations."""

import json
import logging
import queue
import threading

from flask import Blueprint, Response, jsonify, request, stream_with_context

from app_services.integration_service import (
    build_config_payload,
    build_stats_payload,
    build_status_payload,
    parse_config_payload,
)
from ifood_errors import IFoodError, SignatureError
from ifood_models import utcnow
from order_status import RemoteStatus
from order_sync import BUCKET_STATUSES, USER_ACTIONS

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    'configuration_error': 400,
    'auth_error': 401,
    'mapping_not_found': 404,
    'invalid_transition': 409,
    'stale_order': 410,
    'unknown_status': 422,
    'invalid_signature': 401,
    'platform_error': 502,
    'transient_error': 503,
    'request_timeout': 504,
}


def error_response(exc: IFoodError):
    return jsonify(dict(exc.to_dict(), success=False)), ERROR_STATUS_CODES.get(exc.kind, 500)


def register(app, *, engine, token_manager, store, cipher, scheduler, notifier, resolver, webhook_verifier):
    bp = Blueprint('ifood_routes', __name__)
    state_cell = engine.state_cell

    @bp.errorhandler(IFoodError)
    def handle_ifood_error(exc):
        return error_response(exc)

    # ============================================================================
    # CONFIG / STATUS
    # ============================================================================

    @bp.route('/api/ifood/config', methods=['GET'])
    def api_get_config():
        token_manager.current_config()
        return jsonify(build_config_payload(state=state_cell.get()))

    @bp.route('/api/ifood/config', methods=['POST'])
    def api_save_config():
        """Create or update the integration; the client secret is write-only."""
        existing = token_manager.current_config()
        config = parse_config_payload(payload=request.get_json(silent=True), existing=existing, cipher=cipher)
        store.save_config(config)
        token_manager.reload_config()
        scheduler.set_interval(config.polling_interval_seconds)
        logger.info('iFood config saved for merchant %s', config.merchant_id)

        ok, error = token_manager.ensure_authenticated() if config.is_active else (False, None)
        payload = build_config_payload(state=state_cell.get())
        payload.update({'authenticated': ok, 'auth_error': error})
        return jsonify(payload)

    @bp.route('/api/ifood/status')
    def api_status():
        token_manager.current_config()
        return jsonify(build_status_payload(
            state=state_cell.get(),
            scheduler=scheduler,
            notifier=notifier,
            webhook_verifier=webhook_verifier,
            pending=engine.pending,
        ))

    @bp.route('/api/ifood/sync', methods=['POST'])
    def api_sync():
        """Trigger a sync tick without waiting for it."""
        if scheduler.is_running:
            scheduler.trigger()
        else:
            threading.Thread(target=scheduler.run_once, daemon=True, name='ifood-sync-once').start()
        return jsonify({'success': True, 'message': 'sync_started', 'timestamp': utcnow().isoformat()}), 202

    @bp.route('/api/ifood/stats')
    def api_stats():
        token_manager.current_config()
        catalog_products, catalog_error = None, None
        try:
            catalog_products = engine.list_catalog_products()
        except IFoodError as exc:
            logger.warning('iFood catalog unavailable for stats: %s (%s)', exc.message, exc.kind)
            catalog_error = exc.message
        return jsonify(build_stats_payload(
            orders=store.list_orders(list(RemoteStatus)),
            mappings=resolver.list_mappings(),
            catalog_products=catalog_products,
            catalog_error=catalog_error,
            state=state_cell.get(),
            now=utcnow(),
        ))

    @bp.route('/api/ifood/user-code', methods=['POST'])
    def api_user_code():
        """Start the authorization code flow; the merchant approves the code in the iFood portal."""
        body = request.get_json(silent=True) or {}
        client_id = str(body.get('client_id') or body.get('clientId') or '').strip()
        if not client_id:
            config = token_manager.current_config()
            client_id = config.client_id if config else ''
        data = token_manager.request_user_code(client_id)
        return jsonify({
            'success': True,
            'user_code': data.get('userCode'),
            'authorization_code_verifier': data.get('authorizationCodeVerifier'),
            'verification_url': data.get('verificationUrl'),
            'verification_url_complete': data.get('verificationUrlComplete'),
            'expires_in': data.get('expiresIn'),
        })

    # ============================================================================
    # ORDERS
    # ============================================================================

    @bp.route('/api/ifood/orders/<bucket>')
    def api_orders(bucket):
        bucket = bucket.lower()
        if bucket not in BUCKET_STATUSES:
            return jsonify({
                'success': False,
                'error': f'Unknown order bucket: {bucket}',
                'buckets': list(BUCKET_STATUSES),
            }), 404
        orders = engine.list_orders(bucket)
        return jsonify({
            'success': True,
            'bucket': bucket,
            'count': len(orders),
            'orders': [order.to_dict() for order in orders],
        })

    @bp.route('/api/ifood/orders/<order_id>/details')
    def api_order_details(order_id):
        order = engine.get_order_details(order_id)
        return jsonify({'success': True, 'order': order.to_dict()})

    @bp.route('/api/ifood/orders/<order_id>/cancellation-reasons')
    def api_cancellation_reasons(order_id):
        return jsonify({'success': True, 'reasons': engine.get_cancellation_reasons(order_id)})

    @bp.route('/api/ifood/orders/<order_id>/actions/<action>', methods=['POST'])
    def api_order_action(order_id, action):
        if action not in USER_ACTIONS:
            return jsonify({'success': False, 'error': f'Unknown action: {action}',
                            'actions': list(USER_ACTIONS)}), 404
        body = request.get_json(silent=True) or {}
        result = engine.perform_action(
            order_id, action,
            reason_code=body.get('reason_code') or body.get('cancellationCode'),
            reason=body.get('reason'),
        )
        payload = result.to_dict()
        payload['order_id'] = order_id
        payload['action'] = action
        if result.success:
            return jsonify(payload), 202 if result.is_async else 200
        return jsonify(payload), ERROR_STATUS_CODES.get(result.error_kind, 500)

    # ============================================================================
    # PRODUCT MAPPINGS
    # ============================================================================

    @bp.route('/api/ifood/mappings', methods=['GET'])
    def api_list_mappings():
        mappings = resolver.list_mappings()
        return jsonify({'success': True, 'count': len(mappings),
                        'mappings': [m.to_dict() for m in mappings]})

    @bp.route('/api/ifood/mappings', methods=['POST'])
    def api_create_mapping():
        body = request.get_json(silent=True) or {}
        remote_product_id = str(body.get('remote_product_id') or '').strip()
        local_product_id = str(body.get('local_product_id') or '').strip()
        if not remote_product_id or not local_product_id:
            return jsonify({'success': False,
                            'error': 'remote_product_id and local_product_id are required'}), 400
        mapping = resolver.create_mapping(remote_product_id, local_product_id, body.get('remote_sku') or None)
        return jsonify({'success': True, 'mapping': mapping.to_dict()})

    @bp.route('/api/ifood/mappings/<remote_product_id>', methods=['DELETE'])
    def api_delete_mapping(remote_product_id):
        resolver.delete_mapping(remote_product_id)
        return jsonify({'success': True, 'remote_product_id': remote_product_id})

    @bp.route('/api/ifood/products')
    def api_catalog_products():
        products = engine.list_catalog_products()
        return jsonify({'success': True, 'count': len(products), 'products': products})

    # ============================================================================
    # WEBHOOK
    # ============================================================================

    @bp.route('/api/ifood/webhook', methods=['POST'])
    def api_ifood_webhook():
        """Receive iFood pushes and feed the same merge path used by polling."""
        raw_body = request.get_data(cache=True) or b''
        is_valid, auth_reason = webhook_verifier.verify(raw_body, request.headers)
        if not is_valid:
            logger.warning('Rejected iFood webhook: %s', auth_reason)
            if auth_reason == 'webhook_not_configured':
                return jsonify({
                    'success': False,
                    'error': auth_reason,
                    'error_kind': 'configuration_error',
                    'webhook_configured': False,
                }), 503
            raise SignatureError(auth_reason, status_code=401)

        payload = request.get_json(silent=True)
        if payload is None:
            try:
                payload = json.loads(raw_body.decode('utf-8', errors='replace')) if raw_body else {}
            except ValueError:
                return jsonify({'success': False, 'error': 'invalid_json'}), 400
        if not payload:
            return jsonify({'success': True, 'received': 0, 'applied': 0, 'message': 'no_events'}), 202

        summary = engine.handle_webhook(payload)
        return jsonify(dict(summary, success=True)), 202

    # ============================================================================
    # SERVER-SENT EVENTS
    # ============================================================================

    @bp.route('/api/events')
    def sse_stream():
        """SSE endpoint for order and sync notifications"""
        def event_stream(client_queue):
            yield f"event: connected\ndata: {json.dumps({'timestamp': utcnow().isoformat()})}\n\n"
            try:
                while True:
                    try:
                        yield client_queue.get(timeout=30)
                    except queue.Empty:
                        yield f": keepalive {utcnow().isoformat()}\n\n"
            finally:
                notifier.unregister(client_queue)

        client_queue = notifier.register()
        return Response(
            stream_with_context(event_stream(client_queue)),
            mimetype='text/event-stream',
            headers={
                'Cache-Control': 'no-cache',
                'X-Accel-Buffering': 'no',  # Disable nginx buffering
                'Connection': 'keep-alive',
            },
        )

    app.register_blueprint(bp)
    return bp
