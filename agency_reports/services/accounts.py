"""
Client account resolution

Maps a (client, platform) pair to the connector and upstream account
reference a refresh or collection needs.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agency_reports.connectors.base import AdPlatformConnector
from agency_reports.exceptions import AccountResolutionError, PersistenceError
from agency_reports.models.client import Client


@dataclass
class ResolvedAccount:
    client: Client
    connector: AdPlatformConnector
    account_ref: str


def resolve_account(
    db: Session,
    client_id: str,
    platform: str,
    connectors: Dict[str, AdPlatformConnector]
) -> ResolvedAccount:
    """
    Raises:
        AccountResolutionError: unknown or inactive client, missing account
            reference, or no connector configured for the platform
    """
    try:
        client = db.query(Client).filter(Client.id == client_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Client lookup failed for {client_id}: {e}") from e

    if client is None:
        raise AccountResolutionError(f"Unknown client: {client_id}")
    if not client.is_active:
        raise AccountResolutionError(f"Client {client_id} is inactive")

    connector = connectors.get(platform)
    if connector is None:
        raise AccountResolutionError(f"No connector configured for platform '{platform}'")

    account_ref = client.account_ref(platform)
    if not account_ref:
        raise AccountResolutionError(f"Client {client_id} has no {platform} account configured")

    return ResolvedAccount(client=client, connector=connector, account_ref=account_ref)


def active_client_ids(db: Session, platform: Optional[str] = None) -> List[str]:
    """Ids of active clients, limited to those with an account on `platform`."""
    try:
        clients = db.query(Client).filter(Client.is_active.is_(True)).order_by(Client.id).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Client listing failed: {e}") from e

    if platform is None:
        return [c.id for c in clients]
    return [c.id for c in clients if c.account_ref(platform)]
