"""
HTTP API for admins and technicians
"""

from functools import wraps

from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS

import config
from database.connection import get_db
from services.call_service import CallService, TECH_TABS
from services.form_service import FormService
from services.payment_matching import PaymentMatchingService
from services.payment_service import PaymentService
from services.reconciliation_service import ReconciliationService
from services.technician_service import TechnicianService, technician_to_dict
from services.user_service import UserService
from utils.auth import sign_token, verify_token
from utils.errors import AuthError, ForbiddenError, ServiceError
from utils.logger import web_logger as logger
from utils.validation import parse_id

app = Flask(__name__)
CORS(app, origins=config.CORS_ORIGINS, supports_credentials=True)

TOKEN_COOKIE = 'token'


def error_response(message, status_code):
    return jsonify({'success': False, 'error': message}), status_code


def service_error(exc: ServiceError):
    """Known service failure, message is safe to show"""
    return error_response(exc.message, exc.status_code)


def server_error(db, context):
    """Unexpected failure: log it, roll back, hide the details"""
    db.rollback()
    logger.error(f"{context} failed", exc_info=True)
    return error_response('Internal Server Error', 500)


def current_identity():
    """Identity from the bearer token or the auth cookie"""
    auth_header = request.headers.get('Authorization', '')
    token = None
    if auth_header.startswith('Bearer '):
        token = auth_header[len('Bearer '):].strip()
    if not token:
        token = request.cookies.get(TOKEN_COOKIE)
    return verify_token(token) if token else None


def authorize(role=None):
    """Identity of the caller; AuthError without one, ForbiddenError for another role"""
    identity = current_identity()
    if not identity:
        raise AuthError('Unauthorized')
    if role and identity.get('role') != role:
        raise ForbiddenError('Forbidden')
    return identity


def require_role(role=None):
    """Decorator: 401 without identity, 403 for another role; sets g.user"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                g.user = authorize(role)
            except AuthError as e:
                return service_error(e)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def request_data():
    return request.get_json(silent=True) or {}


@app.errorhandler(404)
def not_found(e):
    return error_response('Not found', 404)


@app.errorhandler(405)
def method_not_allowed(e):
    return error_response('Method not allowed', 405)


@app.route('/')
def index():
    return jsonify({'name': config.APP_NAME, 'version': config.VERSION, 'status': 'ok'})


# ------------------ Auth ------------------

def _login(role):
    db = next(get_db())
    try:
        data = request_data()
        identity = UserService(db).authenticate(role, data.get('username'), data.get('password'))
        token = sign_token(identity)
        response = jsonify({'success': True, 'user': identity, 'token': token})
        response.set_cookie(
            TOKEN_COOKIE,
            token,
            max_age=config.TOKEN_MAX_AGE_DAYS * 24 * 3600,
            httponly=True,
            samesite='Lax',
            secure=request.is_secure
        )
        return response
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, f"login-{role}")
    finally:
        db.close()


@app.route('/api/auth/login-admin', methods=['POST'])
def login_admin():
    """Admin login"""
    return _login('admin')


@app.route('/api/auth/login-technician', methods=['POST'])
def login_technician():
    """Technician login"""
    return _login('technician')


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    response = jsonify({'success': True})
    response.delete_cookie(TOKEN_COOKIE)
    return response


@app.route('/api/auth/me', methods=['GET'])
@require_role()
def me():
    return jsonify({'success': True, 'user': g.user})


# ------------------ Reconciliation ------------------

@app.route('/reconciliation/technician-calls', methods=['GET'])
@require_role('admin')
def technician_calls():
    """Per-technician call and payment reconciliation for a window"""
    db = next(get_db())
    try:
        report = ReconciliationService(db).technician_calls(
            month=request.args.get('month'),
            tech_id=request.args.get('techId'),
            date_from=request.args.get('dateFrom'),
            date_to=request.args.get('dateTo')
        )
        response = jsonify({'success': True, **report})
        response.headers['Cache-Control'] = 'private, no-store'
        return response
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "technician-calls")
    finally:
        db.close()


@app.route('/reconciliation/customer-payments', methods=['GET'])
@require_role('admin')
def customer_payments():
    """Paid/pending state of every customer call"""
    db = next(get_db())
    try:
        tech_id = parse_id(request.args.get('techId'), 'techId', required=False)
        report = PaymentMatchingService(db).customer_payments(tech_id)
        return jsonify({'success': True, **report})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "customer-payments")
    finally:
        db.close()


@app.route('/reconciliation/payment-check', methods=['GET'])
@require_role('technician')
def payment_check():
    """Paid call ids and customer keys for the logged-in technician"""
    db = next(get_db())
    try:
        tech_id = parse_id(g.user['id'], 'techId')
        report = PaymentMatchingService(db).payment_check(tech_id)
        return jsonify({'success': True, **report})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "payment-check")
    finally:
        db.close()


# ------------------ Admin: technicians ------------------

@app.route('/api/admin/create-tech', methods=['POST'])
@require_role('admin')
def create_tech():
    db = next(get_db())
    try:
        data = request_data()
        tech = TechnicianService(db).create_technician(
            data.get('username'), data.get('password'), data.get('phone')
        )
        return jsonify({'success': True, 'technician': tech, 'id': tech['_id']}), 201
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "create-tech")
    finally:
        db.close()


@app.route('/api/admin/techs', methods=['GET'])
@require_role('admin')
def list_techs():
    db = next(get_db())
    try:
        return jsonify({'success': True, 'items': TechnicianService(db).list_technicians()})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "techs")
    finally:
        db.close()


@app.route('/api/admin/techs/<tech_id>', methods=['DELETE'])
@require_role('admin')
def delete_tech(tech_id):
    """Delete a technician; their calls and payments stay"""
    db = next(get_db())
    try:
        TechnicianService(db).delete_technician(tech_id)
        return jsonify({'success': True})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "delete-tech")
    finally:
        db.close()


@app.route('/api/admin/tech-summary/<tech_id>', methods=['GET'])
@require_role('admin')
def tech_summary(tech_id):
    db = next(get_db())
    try:
        return jsonify({'success': True, **TechnicianService(db).tech_summary(tech_id)})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "tech-summary")
    finally:
        db.close()


# ------------------ Admin: calls ------------------

@app.route('/api/admin/forward', methods=['POST'])
@require_role('admin')
def forward_call():
    """Forward a new customer call to a technician"""
    db = next(get_db())
    try:
        data = request_data()
        call = CallService(db).forward_call(
            client_name=data.get('clientName'),
            phone=data.get('phone'),
            address=data.get('address'),
            tech_id=data.get('techId'),
            service_type=data.get('type'),
            price=data.get('price'),
            notes=data.get('notes'),
            time_zone=data.get('timeZone')
        )
        return jsonify({'success': True, 'call': call}), 201
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "forward")
    finally:
        db.close()


@app.route('/api/admin/calls', methods=['GET'])
@require_role('admin')
def list_calls():
    db = next(get_db())
    try:
        items, total = CallService(db).list_calls(
            status=request.args.get('status'),
            tech_id=request.args.get('techId'),
            page=request.args.get('page', 1),
            q=request.args.get('q')
        )
        return jsonify({'success': True, 'items': items, 'total': total})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "calls")
    finally:
        db.close()


@app.route('/api/admin/update-call', methods=['POST'])
@require_role('admin')
def admin_update_call():
    db = next(get_db())
    try:
        data = request_data()
        call = CallService(db).update_call(data.get('_id') or data.get('id'), data)
        return jsonify({'success': True, 'message': 'Call updated', 'call': call})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "update-call")
    finally:
        db.close()


@app.route('/api/admin/change-tech', methods=['POST'])
@require_role('admin')
def change_tech():
    db = next(get_db())
    try:
        data = request_data()
        call = CallService(db).change_technician(data.get('callId'), data.get('newTech'))
        return jsonify({
            'success': True,
            'message': 'Technician updated successfully',
            'techName': call['techName'],
            'call': call
        })
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "change-tech")
    finally:
        db.close()


@app.route('/api/admin/delete-call', methods=['POST'])
@require_role('admin')
def delete_call():
    db = next(get_db())
    try:
        CallService(db).delete_call(request_data().get('id'))
        return jsonify({'success': True, 'message': 'Call deleted'})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "delete-call")
    finally:
        db.close()


# ------------------ Admin: payments, forms, summary ------------------

@app.route('/api/admin/payments', methods=['GET'])
@require_role('admin')
def list_payments():
    """Payments by technician and date range; csv=1 returns CSV text"""
    db = next(get_db())
    try:
        service = PaymentService(db)
        result = service.list_payments(
            tech_id=request.args.get('techId'),
            range_name=request.args.get('range', 'today'),
            date_from=request.args.get('from'),
            date_to=request.args.get('to')
        )
        if request.args.get('csv') == '1':
            return jsonify({'success': True, 'csv': service.export_csv(result['items'])})
        return jsonify({'success': True, **result})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "payments")
    finally:
        db.close()


@app.route('/api/admin/payments/<payment_id>', methods=['DELETE'])
@require_role('admin')
def delete_payment(payment_id):
    db = next(get_db())
    try:
        PaymentService(db).delete_payment(payment_id)
        return jsonify({'success': True, 'message': 'Payment deleted successfully'})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "delete-payment")
    finally:
        db.close()


@app.route('/api/admin/forms', methods=['GET'])
@require_role('admin')
def list_forms():
    db = next(get_db())
    try:
        service = FormService(db)
        items = service.list_forms(
            q=request.args.get('q'),
            status=request.args.get('status'),
            tech=request.args.get('tech'),
            date_from=request.args.get('dateFrom'),
            date_to=request.args.get('dateTo')
        )
        if request.args.get('csv') == '1':
            return Response(service.export_csv(items), mimetype='text/csv')
        return jsonify({'success': True, 'items': items})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "forms")
    finally:
        db.close()


@app.route('/api/admin/summary', methods=['GET'])
@require_role('admin')
def admin_summary():
    db = next(get_db())
    try:
        return jsonify({'success': True, **PaymentService(db).summary()})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "summary")
    finally:
        db.close()


# ------------------ Technician ------------------

@app.route('/api/tech/my-calls', methods=['GET'])
@require_role('technician')
def my_calls():
    db = next(get_db())
    try:
        tab = request.args.get('tab', 'All Calls')
        if tab not in TECH_TABS:
            tab = 'All Calls'
        items, total = CallService(db).my_calls(
            parse_id(g.user['id'], 'techId'), tab, request.args.get('page', 1)
        )
        return jsonify({'success': True, 'items': items, 'total': total})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "my-calls")
    finally:
        db.close()


@app.route('/api/tech/update-call', methods=['POST'])
@require_role('technician')
def tech_update_call():
    """Technician status change on one of their calls"""
    db = next(get_db())
    try:
        data = request_data()
        call = CallService(db).update_status(
            data.get('id'), data.get('status'), tech_id=parse_id(g.user['id'], 'techId')
        )
        return jsonify({'success': True, 'call': call})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "tech-update-call")
    finally:
        db.close()


@app.route('/api/tech/mark-as-paid', methods=['POST'])
@require_role('technician')
def mark_as_paid():
    db = next(get_db())
    try:
        call = CallService(db).mark_as_paid(request_data().get('callId'), g.user)
        return jsonify({'success': True, 'callId': call['_id'], 'call': call})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "mark-as-paid")
    finally:
        db.close()


@app.route('/api/tech/payment', methods=['POST'])
@require_role('technician')
def submit_payment():
    """Technician submits collected money, optionally itemized per call"""
    db = next(get_db())
    try:
        data = request_data()
        payment = PaymentService(db).submit_payment(
            tech=g.user,
            receiver=data.get('receiver'),
            mode=data.get('mode'),
            online_amount=data.get('onlineAmount', 0),
            cash_amount=data.get('cashAmount', 0),
            receiver_signature=data.get('receiverSignature'),
            calls=data.get('calls')
        )
        return jsonify({'success': True, 'payment': payment}), 201
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "payment")
    finally:
        db.close()


@app.route('/api/tech/submit-form', methods=['POST'])
@require_role('technician')
def submit_form():
    db = next(get_db())
    try:
        data = request_data()
        form, created = FormService(db).submit_form(
            tech=g.user,
            client_name=data.get('clientName'),
            address=data.get('address'),
            phone=data.get('phone'),
            payment=data.get('payment', 0),
            status=data.get('status'),
            signature=data.get('signature'),
            photos=data.get('photos')
        )
        return jsonify({'success': True, 'created': created, 'form': form}), 201 if created else 200
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "submit-form")
    finally:
        db.close()


@app.route('/api/tech/profile', methods=['GET', 'POST'])
@require_role('technician')
def tech_profile():
    db = next(get_db())
    try:
        service = TechnicianService(db)
        if request.method == 'POST':
            data = request_data()
            profile = service.update_profile(g.user['id'], data.get('phone'), data.get('avatarUrl'))
        else:
            profile = technician_to_dict(service.get_technician(g.user['id']))
        return jsonify({'success': True, 'profile': profile})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "profile")
    finally:
        db.close()


@app.route('/api/save-fcm-token', methods=['POST'])
@require_role('technician')
def save_fcm_token():
    db = next(get_db())
    try:
        TechnicianService(db).save_fcm_token(g.user['id'], request_data().get('token'))
        return jsonify({'success': True})
    except ServiceError as e:
        return service_error(e)
    except Exception:
        return server_error(db, "save-fcm-token")
    finally:
        db.close()
