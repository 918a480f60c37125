# Overview: Lookups against the user, client and contract directories.

from __future__ import annotations

from ..extensions import db
from ..models import User, Client, Contract
from ..errors import NotFoundError, ConflictError, ValidationError
from ..permissions import ALL_ROLES, DEFAULT_ROLE_PERMISSIONS, validate_permission_code


def create_user(*, username: str, full_name: str, role: str, permissions: list[str] | None = None) -> User:
    if role not in ALL_ROLES:
        raise ValidationError(f"Unknown role {role}")
    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError(f"User {username} already exists")

    codes = list(DEFAULT_ROLE_PERMISSIONS[role]) if permissions is None else list(permissions)
    unknown = [c for c in codes if not validate_permission_code(c)]
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}")

    user = User(username=username, full_name=full_name, role=role, permissions=codes, is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


def create_client(*, company_name: str, manager_id: int | None = None, contact_name: str | None = None,
                  phone: str | None = None) -> Client:
    client = Client(company_name=company_name, manager_id=manager_id, contact_name=contact_name, phone=phone)
    db.session.add(client)
    db.session.commit()
    return client


def create_contract(*, client_id: int, contract_number: str) -> Contract:
    require_client(client_id)
    if db.session.query(Contract).filter_by(contract_number=contract_number).first():
        raise ConflictError(f"Contract number {contract_number} already exists")
    contract = Contract(client_id=client_id, contract_number=contract_number)
    db.session.add(contract)
    db.session.commit()
    return contract


def require_active_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"User {user_id} not found or inactive")
    return user


def require_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None or client.is_archived:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def require_contract(contract_id: int, client_id: int) -> Contract:
    contract = db.session.get(Contract, contract_id)
    if contract is None or contract.client_id != client_id or not contract.is_active:
        raise NotFoundError(f"Contract {contract_id} not found for client {client_id}")
    return contract
