"""Database-backed account and credential repository."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.base import as_utc
from ..db.models import AccountCredentialModel, AccountModel
from ..models import Account


def normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized:
        raise ValueError("Email cannot be empty.")
    return normalized


class AccountRepository:
    def get(self, session: Session, account_id: str) -> Optional[Account]:
        model = session.get(AccountModel, account_id)
        if model is None:
            return None
        return self._to_domain(model)

    def get_by_email(self, session: Session, email: str) -> Optional[Account]:
        stmt = select(AccountModel).where(AccountModel.email == normalize_email(email))
        model = session.execute(stmt).scalar_one_or_none()
        return self._to_domain(model) if model else None

    def upsert(self, session: Session, email: str, **fields: Any) -> Account:
        """Create or update an account row; used by provisioning, not by the portal core."""
        normalized = normalize_email(email)
        stmt = select(AccountModel).where(AccountModel.email == normalized)
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            model = AccountModel(email=normalized)
            if fields.get("account_id"):
                model.account_id = fields["account_id"]
            session.add(model)
        for key in ("subscription_status", "pharmacy_name", "pharmacy_phone", "address1", "city", "state", "zipcode"):
            if key in fields:
                setattr(model, key, fields[key])
        session.flush()
        return self._to_domain(model)

    def set_password_hash(self, session: Session, account_id: str, password_hash: str) -> None:
        model = session.get(AccountModel, account_id)
        if model is None:
            raise LookupError(f"Account {account_id} does not exist.")
        credential = session.get(AccountCredentialModel, account_id)
        if credential is None:
            credential = AccountCredentialModel(account_id=account_id, email=model.email, password_hash=password_hash)
            session.add(credential)
        else:
            credential.email = model.email
            credential.password_hash = password_hash
        session.flush()

    def get_credential(self, session: Session, email: str) -> Optional[Dict[str, str]]:
        stmt = select(AccountCredentialModel).where(AccountCredentialModel.email == normalize_email(email))
        credential = session.execute(stmt).scalar_one_or_none()
        if credential is None:
            return None
        return {
            "account_id": credential.account_id,
            "email": credential.email,
            "password_hash": credential.password_hash,
        }

    @staticmethod
    def _to_domain(model: AccountModel) -> Account:
        return Account(
            account_id=model.account_id,
            email=model.email,
            subscription_status=model.subscription_status,
            pharmacy_name=model.pharmacy_name,
            pharmacy_phone=model.pharmacy_phone,
            address1=model.address1,
            city=model.city,
            state=model.state,
            zipcode=model.zipcode,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


__all__ = ["AccountRepository", "normalize_email"]
