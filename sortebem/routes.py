# sortebem/routes.py

# JSON routes for buyers, raffle admins, the site admin and the payment
# gateway webhook. Every route delegates to the raffle, payment and
# credential services; failures are answered with a generic message and the
# internal cause goes to the log.

import hmac
import json
from flask import request, jsonify
from pydantic import ValidationError

from sortebem import app, limiter, db
from sortebem.audit.audit_logger import AuditLogger
from sortebem.credentials.vault import CredentialVault
from sortebem.database.document_store import SqlDocumentStore
from sortebem.database.locks import KeyedLock
from sortebem.database.models import Document
from sortebem.encryption.data_encryption import DataEncryptionService
from sortebem.encryption.password_hashing import PasswordHashingService
from sortebem.errors import ConfigurationError
from sortebem.operations.health_monitor import check_health, check_readiness
from sortebem.payments.gateway import PixGatewayClient
from sortebem.payments.ledger import PaymentLedger
from sortebem.payments.poller import PaymentPoller
from sortebem.raffles.onboarding import RaffleOnboarding
from sortebem.raffles.store import RaffleStore
from sortebem.results import Failure, OperationResult
from sortebem.schemas import PaymentStatus, RaffleCreate, RaffleUpdate, TicketStatus
from sortebem.security.input_validator import InputValidator
from sortebem.security.intrusion_detection import LoginRateLimiter
from sortebem.security.token_manager import (
    TokenManager, jwt_secret_configured, require_raffle_admin, require_site_admin,
)
from sortebem.security.webhook_signature import WebhookSignatureVerifier

SITE_ADMIN_LIMIT_KEY = 'site-admin'
SIGNATURE_HEADER = 'X-Webhook-Signature'

# Initialize services
validator = InputValidator()
store = SqlDocumentStore(app, db, Document)
locks = KeyedLock()
audit_logger = AuditLogger(store, validator)
password_service = PasswordHashingService(
    time_cost=app.config['PASSWORD_HASH_TIME_COST'],
    memory_cost=app.config['PASSWORD_HASH_MEMORY_COST'],
)
encryption_service = DataEncryptionService(app.config['ENCRYPTION_MASTER_KEY'])
rate_limiter = LoginRateLimiter(
    max_attempts=app.config['LOGIN_MAX_ATTEMPTS'],
    window_seconds=app.config['LOGIN_WINDOW_SECONDS'],
)
vault = CredentialVault(store, password_service, encryption_service, rate_limiter,
                        audit_logger, validator, locks)
ledger = PaymentLedger(store, validator, audit_logger, locks)
raffle_store = RaffleStore(store, ledger, validator, audit_logger, locks)
gateway = PixGatewayClient(api_key=app.config['ABACATEPAY_API_KEY'],
                           base_url=app.config['ABACATEPAY_BASE_URL'])
poller = PaymentPoller(ledger, raffle_store, gateway, interval=app.config['PAYMENT_POLL_INTERVAL'])
onboarding = RaffleOnboarding(raffle_store, ledger, vault, gateway, poller, validator,
                              activation_fee=app.config['ACTIVATION_FEE'],
                              public_base_url=app.config['PUBLIC_BASE_URL'])
token_manager = TokenManager(app)
webhook_verifier = WebhookSignatureVerifier(app.config['WEBHOOK_SECRET'])

FAILURE_RESPONSES = {
    Failure.NOT_FOUND: (404, 'Not found'),
    Failure.INVALID_INPUT: (400, 'Invalid input'),
    Failure.TICKETS_UNAVAILABLE: (409, 'Some of the selected tickets are no longer available'),
    Failure.RAFFLE_NOT_ORDERABLE: (409, 'This raffle is not accepting orders'),
    Failure.NO_SOLD_TICKETS: (409, 'There are no sold tickets to draw from'),
    Failure.ALREADY_DRAWN: (409, 'A winner has already been drawn'),
    Failure.ALREADY_CONFIRMED: (409, 'Payment already confirmed'),
    Failure.INVALID_TRANSITION: (409, 'Operation not allowed in the current state'),
    Failure.WEAK_PASSWORD: (400, 'Invalid input'),
    Failure.UNDECRYPTABLE: (500, 'An error occurred, please try again.'),
    Failure.STORAGE_ERROR: (500, 'An error occurred, please try again.'),
    Failure.CRYPTO_ERROR: (500, 'An error occurred, please try again.'),
}


def failure_response(result, **extra):
    status, message = FAILURE_RESPONSES.get(result.error, (400, 'Request failed'))
    body = {'error': message, 'code': result.error.value}
    body.update(extra)
    return jsonify(body), status


def login_denied(identifier):
    response = jsonify({'error': 'Invalid email or password.'})
    retry_after = rate_limiter.retry_after(identifier)
    if retry_after:
        response.headers['Retry-After'] = str(retry_after)
    return response, 401


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    app.logger.info(f"Rejected request body: {e.error_count()} validation errors")
    return jsonify({'error': 'Invalid input'}), 400


@app.errorhandler(ConfigurationError)
def handle_configuration_error(e):
    return jsonify({'error': 'Service temporarily unavailable'}), 503


# -- serializers ---------------------------------------------------------------

def raffle_summary(raffle):
    available = sum(1 for t in raffle.tickets if t.status == TicketStatus.AVAILABLE)
    return {
        'id': raffle.id,
        'name': raffle.name,
        'description': raffle.description,
        'ticket_price': str(raffle.ticket_price),
        'total_tickets': raffle.total_tickets,
        'available_tickets': available,
        'status': raffle.status.value,
        'draw_date': raffle.draw_date.isoformat() if raffle.draw_date else None,
        'winner_ticket_number': raffle.winner_ticket_number,
        'prizes': [p.model_dump() for p in raffle.prizes],
    }


def raffle_public_view(raffle):
    body = raffle_summary(raffle)
    body.update({
        'pix_key_type': raffle.pix_key_type.value,
        'pix_key': raffle.pix_key,
        'responsible_name': raffle.responsible_name,
        'draw_completion_date': raffle.draw_completion_date.isoformat() if raffle.draw_completion_date else None,
        'tickets': [{'number': t.number, 'status': t.status.value} for t in raffle.tickets],
    })
    return body


def payment_view(payment):
    return {
        'id': payment.id,
        'raffle_id': payment.raffle_id,
        'amount': str(payment.amount),
        'status': payment.status.value,
        'reference': payment.reference,
        'payment_method': payment.payment_method.value,
        'gateway_url': payment.gateway_url,
        'gateway_pix_code': payment.gateway_pix_code,
        'created_at': payment.created_at.isoformat(),
        'confirmed_at': payment.confirmed_at.isoformat() if payment.confirmed_at else None,
        'notes': payment.notes,
    }


def request_json():
    return request.get_json(silent=True) or {}


# -- public ------------------------------------------------------------------------

@app.route('/api/raffles', methods=['GET'])
def list_raffles():
    return jsonify([raffle_summary(r) for r in raffle_store.list_public()])


@app.route('/api/raffles', methods=['POST'])
@limiter.limit("10/hour")
def create_raffle():
    data = RaffleCreate.model_validate(request_json())
    result = onboarding.open_raffle(data)
    if not result.ok:
        return failure_response(result)
    raffle = result.value
    return jsonify({
        'raffle': raffle_public_view(raffle),
        'payment': payment_view(result.details['payment']),
    }), 201


@app.route('/api/raffles/<raffle_id>', methods=['GET'])
def get_raffle(raffle_id):
    raffle = raffle_store.get(raffle_id)
    if raffle is None or not raffle.is_public():
        return jsonify({'error': 'Not found'}), 404
    return jsonify(raffle_public_view(raffle))


@app.route('/api/raffles/<raffle_id>/payment', methods=['GET'])
def get_activation_payment(raffle_id):
    raffle = raffle_store.get(raffle_id)
    if raffle is None or not raffle.payment_id:
        return jsonify({'error': 'Not found'}), 404
    payment = ledger.get(raffle.payment_id)
    if payment is None:
        return jsonify({'error': 'Not found'}), 404
    polling = False
    if payment.status == PaymentStatus.PENDING and payment.gateway_charge_id:
        poller.start(payment.id)
        polling = True
    body = payment_view(payment)
    body.update({'raffle_status': raffle.status.value, 'polling': polling})
    return jsonify(body)


@app.route('/api/raffles/<raffle_id>/payment/poll', methods=['DELETE'])
def stop_payment_polling(raffle_id):
    raffle = raffle_store.get(raffle_id)
    if raffle is None or not raffle.payment_id:
        return jsonify({'error': 'Not found'}), 404
    return jsonify({'cancelled': poller.cancel(raffle.payment_id)})


@app.route('/api/raffles/<raffle_id>/payment/proof', methods=['POST'])
@limiter.limit("10/hour")
def submit_payment_proof(raffle_id):
    raffle = raffle_store.get(raffle_id)
    if raffle is None or not raffle.payment_id:
        return jsonify({'error': 'Not found'}), 404
    result = ledger.save_proof(raffle.payment_id, request_json().get('image_ref'))
    if not result.ok:
        return failure_response(result)
    return jsonify({'payment_id': raffle.payment_id, 'submitted': True}), 201


@app.route('/api/raffles/<raffle_id>/reservations', methods=['POST'])
@limiter.limit("30/minute")
def reserve_tickets(raffle_id):
    payload = request_json()
    numbers = payload.get('ticket_numbers')
    if not isinstance(numbers, list) or not all(isinstance(n, int) and not isinstance(n, bool) for n in numbers):
        return jsonify({'error': 'Invalid input'}), 400
    result = raffle_store.reserve(raffle_id, numbers, payload.get('buyer_name'), payload.get('buyer_phone'))
    if not result.ok:
        if result.error == Failure.TICKETS_UNAVAILABLE:
            return failure_response(result, taken=result.details.get('taken', []))
        return failure_response(result)
    return jsonify({'reserved': result.details['reserved'], 'raffle': raffle_public_view(result.value)}), 201


# -- raffle admin --------------------------------------------------------------------

@app.route('/api/raffles/<raffle_id>/admin/login', methods=['POST'])
@limiter.limit("20/minute")
def raffle_admin_login(raffle_id):
    password = request_json().get('password')
    if not isinstance(password, str) or not vault.verify_credential(raffle_id, password):
        return login_denied(raffle_id)
    return jsonify({'access_token': token_manager.generate_raffle_admin_token(raffle_id)})


@app.route('/api/raffles/<raffle_id>/admin', methods=['GET'])
@require_raffle_admin
def raffle_admin_view(raffle_id):
    raffle = raffle_store.get(raffle_id)
    if raffle is None:
        return jsonify({'error': 'Not found'}), 404
    body = raffle.to_document()
    email = vault.decrypt_email(raffle_id)
    body['admin_email'] = email.value if email.ok else None
    return jsonify(body)


@app.route('/api/raffles/<raffle_id>/admin/tickets/<int:ticket_number>/confirm', methods=['POST'])
@require_raffle_admin
def confirm_ticket(raffle_id, ticket_number):
    result = raffle_store.confirm_ticket_payment(raffle_id, ticket_number)
    if not result.ok:
        return failure_response(result)
    return jsonify({'ticket_number': ticket_number, 'status': TicketStatus.SOLD.value})


@app.route('/api/raffles/<raffle_id>/admin/draw', methods=['POST'])
@require_raffle_admin
def draw_winner(raffle_id):
    result = raffle_store.draw_winner(raffle_id)
    if not result.ok:
        if result.error == Failure.ALREADY_DRAWN:
            return failure_response(result, winner_ticket_number=result.value.winner_ticket_number)
        return failure_response(result)
    raffle = result.value
    winner = raffle.ticket(raffle.winner_ticket_number)
    return jsonify({
        'winner_ticket_number': raffle.winner_ticket_number,
        'winner_name': winner.buyer_name,
        'draw_completion_date': raffle.draw_completion_date.isoformat(),
    })


# -- site admin -------------------------------------------------------------------------

@app.route('/api/site-admin/login', methods=['POST'])
@limiter.limit("20/minute")
def site_admin_login():
    payload = request_json()
    email = validator.sanitize_string(payload.get('email'), max_length=254).lower()
    password = payload.get('password')
    configured_email = app.config['SITE_ADMIN_EMAIL'].strip().lower()
    configured_hash = app.config['SITE_ADMIN_PASSWORD_HASH']

    if rate_limiter.is_blocked(SITE_ADMIN_LIMIT_KEY):
        audit_logger.log_action('SITE_ADMIN_LOGIN_BLOCKED', None, {}, False)
        return login_denied(SITE_ADMIN_LIMIT_KEY)

    valid = (
        bool(configured_email) and bool(configured_hash)
        and hmac.compare_digest(email.encode(), configured_email.encode())
        and password_service.verify_password(password, configured_hash)
    )
    if not valid:
        rate_limiter.record_failed_attempt(SITE_ADMIN_LIMIT_KEY)
        audit_logger.log_action('SITE_ADMIN_LOGIN', None, {'email_masked': validator.mask_email(email)}, False)
        return login_denied(SITE_ADMIN_LIMIT_KEY)
    audit_logger.log_action('SITE_ADMIN_LOGIN', None, {'email_masked': validator.mask_email(email)}, True)
    return jsonify({'access_token': token_manager.generate_site_admin_token(email)})


@app.route('/api/site-admin/raffles', methods=['GET'])
@require_site_admin
def site_admin_raffles():
    return jsonify([raffle_summary(r) for r in raffle_store.list_all()])


@app.route('/api/site-admin/raffles/<raffle_id>', methods=['PATCH'])
@require_site_admin
def site_admin_update_raffle(raffle_id):
    update = RaffleUpdate.model_validate(request_json())
    # credential fields are checked before anything is written
    if update.admin_password and not password_service.is_acceptable_password(update.admin_password):
        return failure_response(OperationResult.failure(Failure.WEAK_PASSWORD))
    if update.admin_email and not validator.validate_email(
            validator.sanitize_string(update.admin_email, max_length=254)):
        return failure_response(OperationResult.failure(Failure.INVALID_INPUT))
    details = update.model_dump(exclude_unset=True).keys() - {'admin_email', 'admin_password'}
    if details:
        result = raffle_store.update_details(raffle_id, update)
        if not result.ok:
            return failure_response(result)
        raffle = result.value
    else:
        raffle = raffle_store.get(raffle_id)
        if raffle is None:
            return jsonify({'error': 'Not found'}), 404
    if update.admin_email or update.admin_password:
        changed = vault.update_credential(raffle_id, update.admin_email, update.admin_password)
        if not changed.ok:
            return failure_response(changed)
    return jsonify(raffle_summary(raffle))


@app.route('/api/site-admin/raffles/<raffle_id>/draft', methods=['POST'])
@require_site_admin
def site_admin_set_draft(raffle_id):
    result = raffle_store.set_draft(raffle_id, bool(request_json().get('draft', True)))
    if not result.ok:
        return failure_response(result)
    return jsonify(raffle_summary(result.value))


@app.route('/api/site-admin/raffles/<raffle_id>', methods=['DELETE'])
@require_site_admin
def site_admin_delete_raffle(raffle_id):
    result = raffle_store.delete(raffle_id)
    if not result.ok:
        return failure_response(result)
    return jsonify({'deleted': raffle_id})


@app.route('/api/site-admin/payments', methods=['GET'])
@require_site_admin
def site_admin_payments():
    names = {r.id: r.name for r in raffle_store.list_all()}
    entries = []
    for payment in ledger.list_all():
        body = payment_view(payment)
        body['raffle_name'] = names.get(payment.raffle_id)
        body['has_proof'] = ledger.get_proof(payment.id) is not None
        entries.append(body)
    return jsonify(entries)


@app.route('/api/site-admin/payments/<payment_id>/confirm', methods=['POST'])
@require_site_admin
def site_admin_confirm_payment(payment_id):
    result = ledger.confirm(payment_id, request_json().get('notes') or 'Confirmado manualmente pelo admin.')
    if not result.ok:
        return failure_response(result)
    poller.cancel(payment_id)
    return jsonify(payment_view(result.value))


@app.route('/api/site-admin/payments/<payment_id>/reject', methods=['POST'])
@require_site_admin
def site_admin_reject_payment(payment_id):
    result = ledger.reject(payment_id, request_json().get('notes'))
    if not result.ok:
        return failure_response(result)
    poller.cancel(payment_id)
    return jsonify(payment_view(result.value))


@app.route('/api/site-admin/audit', methods=['GET'])
@require_site_admin
def site_admin_audit_log():
    entries = list(reversed(audit_logger.entries(request.args.get('raffle_id'))))
    return jsonify({'integrity_ok': audit_logger.verify_log_integrity(), 'entries': entries})


# -- gateway webhook -----------------------------------------------------------------------

@app.route('/webhooks/pix', methods=['POST'])
def pix_webhook():
    payload = request.get_data()
    if not webhook_verifier.verify(payload, request.headers.get(SIGNATURE_HEADER, '')):
        audit_logger.log_action('WEBHOOK_SIGNATURE_REJECTED', 'system', {}, False)
        return jsonify({'error': 'Access denied'}), 401
    try:
        event = json.loads(payload)
    except ValueError:
        return jsonify({'error': 'Invalid input'}), 400

    if not isinstance(event, dict) or event.get('event') != 'billing.paid':
        return jsonify({'success': True, 'message': 'Ignored event type'})

    billing = event.get('data') or {}
    charge_id = billing.get('id')
    audit_logger.log_action('WEBHOOK_PAYMENT_RECEIVED', 'system',
                            {'billing_id': str(charge_id), 'amount': billing.get('amount'), 'status': 'PAID'}, True)
    payment = ledger.find_by_charge_id(charge_id)
    if payment is None:
        app.logger.warning(f"Webhook for unknown charge {charge_id}")
        return jsonify({'success': True, 'message': 'Unknown charge'})
    result = ledger.confirm(payment.id, 'Pago via PIX (webhook)')
    poller.cancel(payment.id)
    return jsonify({'success': True, 'payment_status': (result.value.status.value if result.value else None)})


# -- health ----------------------------------------------------------------------------------

@app.route('/health', methods=['GET'])
def health():
    res = check_health(db, encryption_service, webhook_verifier, gateway, poller,
                       jwt_secret_ok=jwt_secret_configured(app))
    return jsonify(res), (200 if res['overall_ok'] else 503)


@app.route('/ready', methods=['GET'])
def ready():
    res = check_readiness(db)
    return jsonify(res), (200 if res['overall_ok'] else 503)


if app.config['POLL_ON_STARTUP']:
    with app.app_context():
        poller.resume_pending()
