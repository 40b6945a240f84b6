from flask import Blueprint, request, jsonify, g
from auth import authenticate, create_access_token, login_required
from exceptions import ConfigurationError
import logging

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.route('/login', methods=['POST'])
def login():
    """Exchange email and password for a bearer token"""
    payload = request.get_json(silent=True) or {}
    email = payload.get('email')
    password = payload.get('password')
    if not email or not password:
        raise ConfigurationError("Email and password are required")

    user = authenticate(email, password)
    token = create_access_token(user)
    logging.info(f"User {user.email} logged in as {user.role}")

    return jsonify({
        'success': True,
        'message': 'Login successful',
        'token': token,
        'user': user.to_dict()
    })


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'success': True, 'user': g.current_user.to_dict()})
