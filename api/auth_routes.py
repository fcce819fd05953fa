import logging

from flask import Blueprint, current_app, jsonify, redirect, request

from backend.auth import (
    ADMIN_REFRESH_COOKIE,
    CLIENT_REFRESH_COOKIE,
    client_auth_required,
    current_user_id,
    issue_tokens,
    logout_user,
    rotate_tokens,
    set_auth_cookies,
)
from backend.errors import GitHubError
from backend.models import SuperUser, User
from backend.services import badges, github
from backend.services.default_items import award_default_items

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/api/auth/github', methods=['GET'])
def github_login():
    return redirect(github.authorize_url())


@auth_bp.route('/api/auth/callback/github', methods=['GET'])
def github_callback():
    client_url = current_app.config['CLIENT_URL']
    code = request.args.get('code')
    if not code:
        return redirect(f"{client_url}/auth/error")
    try:
        access_token = github.exchange_code(code)
        profile = github.fetch_github_user(access_token)
        user, created = User.upsert_from_github(
            github_id=profile['id'],
            username=profile['login'],
            access_token=access_token,
            image=profile.get('avatar_url'),
        )
    except (GitHubError, KeyError) as e:
        logger.error("GitHub OAuth error: %s", e)
        return redirect(f"{client_url}/auth/error")

    if created:
        logger.info("New user %s signed up", user.username)
        award_default_items(user.id)
    badges.check_and_award_badges(user.id)

    is_admin = SuperUser.get_by_user_id(user.id) is not None
    access, refresh = issue_tokens(user, is_admin=is_admin)
    return set_auth_cookies(redirect(f"{client_url}/auth/callback"), access, refresh, is_admin)


@auth_bp.route('/api/auth/session', methods=['GET'])
@client_auth_required
def session_info():
    user = User.get_by_id(current_user_id())
    if not user:
        return jsonify({'message': 'User not authenticated'}), 401
    is_admin = SuperUser.get_by_user_id(user.id) is not None
    return jsonify({
        'user': {'id': user.id, 'username': user.username, 'image': user.image},
        'is_admin': is_admin,
    })


@auth_bp.route('/api/auth/refresh', methods=['POST'])
def refresh_session():
    token = request.cookies.get(ADMIN_REFRESH_COOKIE) or request.cookies.get(CLIENT_REFRESH_COOKIE)
    if not token:
        return jsonify({'message': 'No refresh token provided'}), 401
    rotated = rotate_tokens(token)
    if rotated is None:
        return jsonify({'message': 'Invalid refresh token'}), 401
    user, is_admin, access, refresh = rotated
    response = jsonify({
        'message': 'Token refreshed successfully',
        'user': {'id': user.id, 'username': user.username, 'image': user.image},
        'is_admin': is_admin,
    })
    return set_auth_cookies(response, access, refresh, is_admin)


@auth_bp.route('/api/auth/logout', methods=['POST'])
def logout():
    return logout_user(jsonify({'message': 'Logged out successfully'}))
