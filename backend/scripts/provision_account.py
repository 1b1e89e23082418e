"""Create or update a subscriber account with sign-in credentials.

Signup happens outside the portal; operators and local setups use this to seed
accounts the portal can authenticate against.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from portal.db.session import create_schema, get_engine, session_scope
from portal.models import SubscriptionStatus
from portal.passwords import hash_password
from portal.repositories import AccountRepository

LOGGER = logging.getLogger("portal.provision")

ACCOUNT_FIELDS = ("pharmacy_name", "pharmacy_phone", "address1", "city", "state", "zipcode")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision a member portal account.")
    parser.add_argument("email", help="Sign-in email for the account.")
    parser.add_argument(
        "--password",
        default=os.getenv("PORTAL_PROVISION_PASSWORD"),
        help="Password to set (default: $PORTAL_PROVISION_PASSWORD, else prompt).",
    )
    parser.add_argument(
        "--subscription-status",
        default=SubscriptionStatus.ACTIVE.value,
        choices=[status.value for status in SubscriptionStatus],
    )
    parser.add_argument("--account-id", default=None, help="Explicit account id for new accounts.")
    parser.add_argument("--pharmacy-name", dest="pharmacy_name")
    parser.add_argument("--pharmacy-phone", dest="pharmacy_phone")
    parser.add_argument("--address1")
    parser.add_argument("--city")
    parser.add_argument("--state")
    parser.add_argument("--zipcode")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables first (local SQLite setups; deploys use run_migrations.py).",
    )
    return parser.parse_args(argv)


def provision_account(
    email: str,
    password: str,
    *,
    subscription_status: str = SubscriptionStatus.ACTIVE.value,
    account_id: Optional[str] = None,
    **fields: Optional[str],
) -> Dict[str, Any]:
    accounts = AccountRepository()
    values: Dict[str, Any] = {key: value for key, value in fields.items() if value is not None}
    values["subscription_status"] = subscription_status
    if account_id:
        values["account_id"] = account_id
    with session_scope() as session:
        account = accounts.upsert(session, email, **values)
        accounts.set_password_hash(session, account.account_id, hash_password(password))
    LOGGER.info("Provisioned account_id=%s for %s", account.account_id, account.email)
    return account.model_dump(mode="json")


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("PORTAL_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    password = args.password or getpass.getpass("Password: ")
    if not password:
        LOGGER.error("A password is required.")
        return 2
    try:
        if args.create_schema:
            create_schema(get_engine())
        account = provision_account(
            args.email,
            password,
            subscription_status=args.subscription_status,
            account_id=args.account_id,
            **{key: getattr(args, key) for key in ACCOUNT_FIELDS},
        )
    except (RuntimeError, ValueError, SQLAlchemyError) as exc:
        LOGGER.error("Provisioning failed: %s", exc)
        return 1
    print(json.dumps(account))
    return 0


if __name__ == "__main__":
    sys.exit(main())
