"""
Database helpers for the food ordering backend.

Collections are keyed either by an owner identifier issued by the auth
provider (profiles, locations) or by an auto-generated ObjectId (menu
records, promos, orders). Every helper takes the database handle explicitly
so routes and tests can inject their own.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

CLIENTS = "clients"
SERVICE_PROVIDERS = "serviceProviders"
MENU_SECTIONS = "menuSections"
MENU_ITEMS = "menuItems"
PROMOS = "promos"
ORDERS = "orders"
CLIENT_LOCATIONS = "client-location"
PROVIDER_LOCATIONS = "service-provider-location"
SESSIONS = "sessions"

_client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def id_filter(doc_id: str) -> Dict[str, Any]:
    """Filter matching a document by either its ObjectId or its plain string key."""
    if isinstance(doc_id, ObjectId):
        return {"_id": doc_id}
    if ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [ObjectId(doc_id), doc_id]}}
    return {"_id": doc_id}


def to_bson(value: Any) -> Any:
    """Convert values BSON cannot encode (Decimal) recursively."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    return value


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    # Convert nested ObjectIds if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, dict):
            doc[k] = serialize_doc(v)
        elif isinstance(v, list):
            new_list = []
            for item in v:
                if isinstance(item, dict):
                    item = serialize_doc(item)
                elif isinstance(item, ObjectId):
                    item = str(item)
                new_list.append(item)
            doc[k] = new_list
    return doc


def create_document(db, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a new document, stamping created_at/updated_at, and return its id."""
    data_dict = to_bson(_as_dict(data))
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(db, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return db[collection_name].find_one(id_filter(doc_id))


def update_document(db, collection_name: str, doc_id: str, fields: Dict[str, Any]) -> bool:
    """Set the given fields on one document. Returns False when nothing matched."""
    update = to_bson(dict(fields))
    update["updated_at"] = datetime.now(timezone.utc)
    result = db[collection_name].update_one(id_filter(doc_id), {"$set": update})
    return result.matched_count > 0


def upsert_document(db, collection_name: str, doc_id: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Overwrite the document keyed by doc_id wholesale, creating it if absent."""
    data_dict = to_bson(_as_dict(data))
    data_dict.pop("_id", None)
    data_dict["updated_at"] = datetime.now(timezone.utc)
    db[collection_name].replace_one({"_id": doc_id}, data_dict, upsert=True)
    return doc_id


def set_fields(db, collection_name: str, doc_id: str, fields: Dict[str, Any]) -> None:
    """$set fields on the document keyed by doc_id, creating it if absent."""
    update = to_bson(dict(fields))
    update["updated_at"] = datetime.now(timezone.utc)
    db[collection_name].update_one({"_id": doc_id}, {"$set": update}, upsert=True)


def unset_fields(db, collection_name: str, doc_id: str, *names: str) -> None:
    db[collection_name].update_one({"_id": doc_id}, {"$unset": {name: "" for name in names}})


def delete_document(db, collection_name: str, doc_id: str) -> bool:
    result = db[collection_name].delete_one(id_filter(doc_id))
    return result.deleted_count > 0
