# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..models.auth import ROLE_ADMIN
from ..services import auth_service, session_service, audit_service
from ..services.auth_service import PasswordValidationError
from ..decorators import require_auth, require_role, current_actor
from ..validation import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Request body: {"username": "...", "password": "..."} (username may be an email)
    """
    data = json_body(request.get_json(silent=True))
    username = data.get("username") or data.get("email")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400

    user = auth_service.authenticate(username, password)
    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    _, token = session_service.create_session(
        user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return jsonify({"user": user.to_dict(), "token": token}), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers["Authorization"].split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.post("/users")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    """
    Create a staff user (admin only; there is no self-registration).

    Request body: {"username", "name", "password", "role_name"?, "email"?}
    """
    data = json_body(request.get_json(silent=True))
    username = data.get("username")
    name = data.get("name")
    password = data.get("password")

    if not all([username, name, password]):
        return jsonify({"error": "username, name and password required"}), 400

    try:
        user = auth_service.create_user(
            username=username,
            name=name,
            password=password,
            role_name=data.get("role_name") or "cashier",
            email=data.get("email"),
        )
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    audit_service.log_action(current_actor(), "user.create", "user", user.id, {
        "username": user.username,
        "role_name": user.role_name,
    })
    return jsonify({"user": user.to_dict()}), 201
