"""
Bearer-token identity and role checks for the API.
"""

import logging
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import current_app, g, request
from jose import JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from exceptions import AuthenticationError, AuthorizationError
from models import db, User

ALGORITHM = "HS256"
ROLES = ('admin', 'instructor')

# What the services are told about the caller
Identity = namedtuple('Identity', ['user_id', 'role', 'coordinator_for'])


def hash_password(password):
    return generate_password_hash(password)


def verify_password(user, password):
    if not user or not user.password_hash or password is None:
        return False
    return check_password_hash(user.password_hash, password)


def create_access_token(user, expires_delta=None):
    """Sign a token carrying the user's id, role and coordinated subject code"""
    if expires_delta is None:
        expires_delta = timedelta(hours=current_app.config.get('JWT_EXPIRES_HOURS', 24))
    expire = datetime.now(timezone.utc) + expires_delta
    claims = {
        "sub": str(user.id),
        "role": user.role,
        "coordinator_for": user.coordinator_for,
        "exp": expire
    }
    return jwt.encode(claims, current_app.config['JWT_SECRET_KEY'], algorithm=ALGORITHM)


def decode_access_token(token):
    try:
        claims = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=[ALGORITHM])
    except JWTError as e:
        logging.warning(f"Token verification failed: {e}")
        raise AuthenticationError("Token verification failed")
    if not claims.get("sub"):
        raise AuthenticationError("Token verification failed")
    return claims


def authenticate(email, password):
    """Return the user matching the credentials or raise AuthenticationError"""
    email = (email or '').strip().lower()
    user = User.query.filter(db.func.lower(User.email) == email).first() if email else None
    if not verify_password(user, password):
        logging.info(f"Failed login attempt for '{email}'")
        raise AuthenticationError("Invalid email or password")
    return user


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    return token or None


def load_identity():
    """Resolve the request's bearer token into g.current_user and g.identity"""
    token = _bearer_token()
    if not token:
        raise AuthenticationError("Not authorized, no token")
    claims = decode_access_token(token)
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Token verification failed")

    user = db.session.get(User, user_id)
    if user is None:
        raise AuthenticationError("User not found")

    # Role and coordinator assignment come from the stored user, so admin changes apply immediately
    g.current_user = user
    g.identity = Identity(user.id, user.role, user.coordinator_for)
    return g.identity


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        load_identity()
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """
    Decorator allowing only the given roles.

    Implies login_required.
    """
    allowed = {r.strip().lower() for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = load_identity()
            if (identity.role or '').lower() not in allowed:
                raise AuthorizationError(f"Forbidden: {' or '.join(sorted(allowed)).title()} only")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_only = role_required('admin')
instructor_only = role_required('instructor')


def coordinator_required(f):
    """Allow only users that coordinate a subject"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = load_identity()
        if not identity.coordinator_for:
            raise AuthorizationError("Forbidden: Course Coordinators only")
        return f(*args, **kwargs)
    return decorated_function


def is_coordinator_of(identity, subject):
    return bool(identity and subject and identity.coordinator_for
                and identity.coordinator_for == subject.subject_code)
