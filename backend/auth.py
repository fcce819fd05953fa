import logging
import threading
import time
from datetime import timedelta
from functools import wraps

import jwt
from flask import current_app, g, jsonify, make_response, request

from backend.models import RefreshToken, SuperUser, User
from backend.timeutils import utcnow

logger = logging.getLogger(__name__)

CLIENT_ACCESS_COOKIE = 'client_access_token'
CLIENT_REFRESH_COOKIE = 'client_refresh_token'
ADMIN_ACCESS_COOKIE = 'admin_access_token'
ADMIN_REFRESH_COOKIE = 'admin_refresh_token'

# access token -> exp (unix seconds); entries are dropped once the token would have expired anyway
_blacklist = {}
_blacklist_lock = threading.Lock()


def blacklist_token(token, expires_at):
    with _blacklist_lock:
        _blacklist[token] = expires_at


def is_token_blacklisted(token):
    now = time.time()
    with _blacklist_lock:
        for stale in [t for t, exp in _blacklist.items() if exp < now]:
            del _blacklist[stale]
        return token in _blacklist


def cookie_names(is_admin):
    if is_admin:
        return ADMIN_ACCESS_COOKIE, ADMIN_REFRESH_COOKIE
    return CLIENT_ACCESS_COOKIE, CLIENT_REFRESH_COOKIE


def create_access_token(user, is_admin=False):
    now = utcnow()
    payload = {
        'id': user.id,
        'username': user.username,
        'image': user.image,
        'is_admin': bool(is_admin),
        'iat': now,
        'exp': now + timedelta(seconds=current_app.config['ACCESS_TOKEN_SECONDS']),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')


def decode_access_token(token):
    return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])


def issue_tokens(user, is_admin=False):
    """Start a new refresh-token family for a fresh login."""
    try:
        RefreshToken.purge_stale()
    except Exception as e:
        logger.warning("Could not purge stale refresh tokens: %s", e)
    access = create_access_token(user, is_admin)
    refresh = RefreshToken.create(user.id, current_app.config['REFRESH_TOKEN_SECONDS'], is_admin=is_admin)
    return access, refresh


def rotate_tokens(refresh_token):
    """Exchange a refresh token. Returns ``(user, is_admin, access, refresh)`` or None."""
    rotated = RefreshToken.rotate(refresh_token, current_app.config['REFRESH_TOKEN_SECONDS'])
    if rotated is None:
        return None
    row, new_refresh = rotated
    user = User.get_by_id(row['user_id'])
    if user is None:
        return None
    return user, row['is_admin'], create_access_token(user, row['is_admin']), new_refresh


def _cookie_options(max_age):
    cfg = current_app.config
    options = {
        'max_age': max_age,
        'httponly': True,
        'secure': cfg['ENV'] == 'production',
        'samesite': 'Lax',
        'path': '/',
    }
    if cfg['ENV'] == 'production' and cfg.get('COOKIE_DOMAIN'):
        options['domain'] = cfg['COOKIE_DOMAIN']
    return options


def set_auth_cookies(response, access, refresh, is_admin):
    access_name, refresh_name = cookie_names(is_admin)
    response.set_cookie(access_name, access, **_cookie_options(current_app.config['ACCESS_TOKEN_SECONDS']))
    response.set_cookie(refresh_name, refresh, **_cookie_options(current_app.config['REFRESH_TOKEN_SECONDS']))
    return response


def clear_auth_cookies(response, is_admin):
    for name in cookie_names(is_admin):
        options = _cookie_options(0)
        options.pop('max_age')
        response.delete_cookie(name, **options)
    return response


def _set_current(payload, is_admin, super_user=None):
    g.user = {'id': payload['id'], 'username': payload['username'], 'image': payload.get('image')}
    g.is_admin = bool(is_admin)
    g.super_user = super_user


def current_user_id():
    return g.user['id']


def _refreshed_call(f, args, kwargs, refresh_token, admin_only=False):
    rotated = rotate_tokens(refresh_token)
    if rotated is None:
        return jsonify({'message': 'Invalid refresh token'}), 401
    user, is_admin, access, refresh = rotated
    super_user = None
    if admin_only:
        if not is_admin:
            return jsonify({'message': 'Invalid refresh token'}), 401
        super_user = SuperUser.get_by_user_id(user.id)
        if not super_user:
            return jsonify({'message': 'Not authorized as admin'}), 403
    _set_current({'id': user.id, 'username': user.username, 'image': user.image}, is_admin, super_user)
    # the old refresh token is revoked by now; error responses carry the new pair too
    try:
        response = make_response(f(*args, **kwargs))
    except Exception as e:
        response = make_response(current_app.handle_user_exception(e))
    return set_auth_cookies(response, access, refresh, is_admin)


def client_auth_required(f):
    """Require a client or admin session; expired access tokens are renewed from the refresh cookie."""
    @wraps(f)
    def decorated(*args, **kwargs):
        admin_cookie = request.cookies.get(ADMIN_ACCESS_COOKIE)
        token = request.cookies.get(CLIENT_ACCESS_COOKIE) or admin_cookie
        refresh = request.cookies.get(CLIENT_REFRESH_COOKIE) or request.cookies.get(ADMIN_REFRESH_COOKIE)
        if token:
            if is_token_blacklisted(token):
                return jsonify({'message': 'Token revoked'}), 401
            try:
                payload = decode_access_token(token)
            except jwt.ExpiredSignatureError:
                payload = None
            except jwt.InvalidTokenError:
                return jsonify({'message': 'Invalid token'}), 401
            if payload is not None:
                _set_current(payload, payload.get('is_admin'))
                return f(*args, **kwargs)
            if not refresh:
                return jsonify({'message': 'Token expired'}), 401
        if not refresh:
            return jsonify({'message': 'No token provided'}), 401
        return _refreshed_call(f, args, kwargs, refresh)
    return decorated


def admin_required(f):
    """Require an admin session backed by a super_users row."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.cookies.get(ADMIN_ACCESS_COOKIE)
        refresh = request.cookies.get(ADMIN_REFRESH_COOKIE)
        if token:
            if is_token_blacklisted(token):
                return jsonify({'message': 'Token revoked'}), 401
            try:
                payload = decode_access_token(token)
            except jwt.ExpiredSignatureError:
                payload = None
            except jwt.InvalidTokenError:
                return jsonify({'message': 'Invalid token'}), 401
            if payload is not None:
                if not payload.get('is_admin'):
                    return jsonify({'message': 'Client token not allowed for admin routes'}), 403
                super_user = SuperUser.get_by_user_id(payload['id'])
                if not super_user:
                    return jsonify({'message': 'Not authorized as admin'}), 403
                _set_current(payload, True, super_user)
                return f(*args, **kwargs)
            if not refresh:
                return jsonify({'message': 'Token expired'}), 401
        if not refresh:
            return jsonify({'message': 'No token provided'}), 401
        return _refreshed_call(f, args, kwargs, refresh, admin_only=True)
    return decorated


def logout_user(response):
    """Blacklist access tokens, revoke refresh tokens and clear both cookie namespaces."""
    for is_admin in (False, True):
        access_name, refresh_name = cookie_names(is_admin)
        access = request.cookies.get(access_name)
        if access:
            try:
                claims = jwt.decode(access, options={'verify_signature': False})
                if claims.get('exp'):
                    blacklist_token(access, claims['exp'])
            except jwt.InvalidTokenError:
                logger.info("Ignoring undecodable %s during logout", access_name)
        refresh = request.cookies.get(refresh_name)
        if refresh:
            RefreshToken.revoke(refresh)
        if access or refresh:
            clear_auth_cookies(response, is_admin)
    return response
