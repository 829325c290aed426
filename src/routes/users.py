# -*- coding: utf-8 -*-
"""
User accounts: registration, login, profiles and creator balances.
"""
from flask import Blueprint, g, jsonify, request

from src.database import db
from src.infra.auth import require_auth
from src.infra.log import get_logger
from src.middleware.auth import issue_token
from src.models.character import Character
from src.models.purchase import CreatorPayout
from src.models.user import User
from src.schemas.users import LoginSchema, ProfileUpdateSchema, RegisterSchema
from src.services import balances
from src.services.errors import NotFound, ValidationError

logger = get_logger('waifu.users')

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


def _taken(username=None, email=None, exclude_id=None) -> bool:
    clauses = []
    if username:
        clauses.append(User.username == username)
    if email:
        clauses.append(User.email == email.lower())
    if not clauses:
        return False
    query = User.query.filter(db.or_(*clauses))
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    return db.session.query(query.exists()).scalar()


@users_bp.route('/register', methods=['POST'])
def register():
    data = RegisterSchema().load(request.get_json(silent=True) or {})
    if _taken(username=data['username'], email=data['email']):
        raise ValidationError("User already exists")

    user = User(username=data['username'], email=data['email'].lower())
    user.set_password(data['password'])
    db.session.add(user)
    db.session.commit()

    logger.log_auth_event('register', success=True, user_id=user.id)
    return jsonify({'token': issue_token(user), 'user': user.to_dict()}), 201


@users_bp.route('/login', methods=['POST'])
def login():
    data = LoginSchema().load(request.get_json(silent=True) or {})
    user = User.query.filter_by(email=data['email'].lower()).first()
    if user is None or not user.check_password(data['password']):
        logger.log_auth_event('login', success=False)
        raise ValidationError("Invalid credentials")

    logger.log_auth_event('login', success=True, user_id=user.id)
    return jsonify({'token': issue_token(user)})


@users_bp.route('/profile', methods=['GET'])
@require_auth
def get_profile():
    return jsonify(g.current_user.to_dict())


@users_bp.route('/profile', methods=['PUT'])
@require_auth
def update_profile():
    user = g.current_user
    data = ProfileUpdateSchema().load(request.get_json(silent=True) or {})
    if _taken(username=data.get('username'), email=data.get('email'), exclude_id=user.id):
        raise ValidationError("Username or email already in use")

    if 'username' in data:
        user.username = data['username']
    if 'email' in data:
        user.email = data['email'].lower()
    if 'bio' in data:
        user.bio = data['bio']
    if 'profile_picture' in data:
        user.profile_picture = data['profile_picture']
    if data.get('password'):
        user.set_password(data['password'])
    db.session.commit()
    return jsonify(user.to_dict())


@users_bp.route('/creators', methods=['GET'])
def list_creators():
    """Users owning at least one character."""
    creator_ids = db.session.query(Character.creator_id).distinct()
    creators = User.query.filter(User.id.in_(creator_ids)).order_by(User.username.asc()).all()
    return jsonify([u.public_dict() for u in creators])


@users_bp.route('/balance', methods=['GET'])
@require_auth
def get_balance():
    user = g.current_user
    payouts = (CreatorPayout.query
               .filter_by(creator_id=user.id)
               .order_by(CreatorPayout.created_at.desc())
               .all())
    derived = balances.derived_balance(user.id)
    return jsonify({
        'balance': user.balance_dict(),
        'derived': {k: float(v) for k, v in derived.items()},
        'payouts': [p.to_dict() for p in payouts],
    })


@users_bp.route('/<user_id>', methods=['GET'])
def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return jsonify(user.public_dict())
