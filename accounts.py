"""Customer and service provider profiles, keyed by the auth provider's user id."""

from typing import Any, Dict, List, Optional

import structlog

from database import CLIENTS, SERVICE_PROVIDERS, get_document, get_documents, serialize_doc, upsert_document
from schemas import ClientProfile, ServiceProviderProfile

logger = structlog.get_logger()


def register_client(db, user_id: str, profile: ClientProfile) -> Dict[str, Any]:
    upsert_document(db, CLIENTS, user_id, profile)
    logger.info("client_registered", user_id=user_id)
    return serialize_doc(get_document(db, CLIENTS, user_id))


def register_provider(db, user_id: str, profile: ServiceProviderProfile) -> Dict[str, Any]:
    upsert_document(db, SERVICE_PROVIDERS, user_id, profile)
    logger.info("provider_registered", user_id=user_id, business_name=profile.business_name)
    return serialize_doc(get_document(db, SERVICE_PROVIDERS, user_id))


def get_client(db, user_id: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(get_document(db, CLIENTS, user_id))


def get_provider(db, provider_id: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(get_document(db, SERVICE_PROVIDERS, provider_id))


def list_providers(db) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in get_documents(db, SERVICE_PROVIDERS)]
