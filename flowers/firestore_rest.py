"""
Firestore REST adapter
Talks to the Firestore v1 REST API with httpx, translating plain Python
values to and from Firestore's typed value encoding.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .document_store import DocumentStore, split_collection_path, split_document_path
from .errors import DocumentNotFoundError, RemoteStoreError

logger = logging.getLogger(__name__)


def encode_value(value: Any) -> Dict[str, Any]:
    """Python value -> Firestore ``Value``"""
    if value is None:
        return {"nullValue": None}
    # bool before int, bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {"timestampValue": value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: Dict[str, Any]) -> Any:
    """Firestore ``Value`` -> Python value"""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return datetime.fromisoformat(value["timestampValue"].replace("Z", "+00:00"))
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


def _error_detail(response: httpx.Response) -> str:
    try:
        error_data = response.json()
        if isinstance(error_data, list) and error_data:
            error_data = error_data[0]
        return error_data.get("error", {}).get("message", str(error_data))
    except Exception:
        return response.text[:200]


class FirestoreRestStore(DocumentStore):
    """Document store on the Firestore REST API"""

    def __init__(self, project_id: str, database: str = "(default)", api_key: str = "",
                 base_url: str = "https://firestore.googleapis.com/v1",
                 auth_token: Optional[str] = None, timeout: float = 15.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.documents_root = f"projects/{project_id}/databases/{database}/documents"
        self.base_url = f"{base_url.rstrip('/')}/{self.documents_root}"
        self.api_key = api_key
        self.auth_token = auth_token
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "FirestoreRestStore":
        logger.info(f"Using Firestore project '{config.FIRESTORE_PROJECT_ID}'")
        return cls(
            project_id=config.FIRESTORE_PROJECT_ID,
            database=config.FIRESTORE_DATABASE,
            api_key=config.FIRESTORE_API_KEY,
            base_url=config.FIRESTORE_BASE_URL,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
        )

    def set_auth_token(self, token: Optional[str]):
        self.auth_token = token

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _params(self, extra: Optional[List[tuple]] = None) -> List[tuple]:
        params = list(extra or [])
        if self.api_key:
            params.append(("key", self.api_key))
        return params

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, url, headers=self._get_headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Firestore {operation} timed out: {e}")
            raise RemoteStoreError(operation, e) from e
        except httpx.HTTPError as e:
            logger.error(f"Firestore {operation} transport error: {e}")
            raise RemoteStoreError(operation, e) from e

    def _raise_for_status(self, operation: str, response: httpx.Response):
        if response.status_code >= 400:
            raise RemoteStoreError(operation, detail=f"HTTP {response.status_code}: {_error_detail(response)}")

    def _read_json(self, operation: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            # e.g. an HTML page from a proxy or captive portal
            logger.error(f"Firestore {operation} returned a non-JSON body: {response.text[:200]}")
            raise RemoteStoreError(operation, e, detail="response body is not JSON") from e

    def _decode_document(self, operation: str, document: Any) -> Dict[str, Any]:
        try:
            return decode_fields(document.get("fields", {}))
        except (ValueError, AttributeError, TypeError) as e:
            logger.error(f"Firestore {operation} returned an undecodable document: {e}")
            raise RemoteStoreError(operation, e) from e

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        split_document_path(path)
        operation = f"get {path}"
        response = await self._request(operation, "GET", f"{self.base_url}/{path}", params=self._params())
        if response.status_code == 404:
            return None
        self._raise_for_status(operation, response)
        return self._decode_document(operation, self._read_json(operation, response))

    async def set(self, path: str, data: Dict[str, Any]):
        split_document_path(path)
        # PATCH without an update mask replaces the whole document, creating it if needed
        response = await self._request(
            f"set {path}", "PATCH", f"{self.base_url}/{path}",
            params=self._params(), json={"fields": encode_fields(data)},
        )
        self._raise_for_status(f"set {path}", response)

    async def update(self, path: str, fields: Dict[str, Any]):
        split_document_path(path)
        mask = [("updateMask.fieldPaths", name) for name in fields]
        mask.append(("currentDocument.exists", "true"))
        response = await self._request(
            f"update {path}", "PATCH", f"{self.base_url}/{path}",
            params=self._params(mask), json={"fields": encode_fields(fields)},
        )
        if response.status_code == 404:
            raise DocumentNotFoundError(path)
        self._raise_for_status(f"update {path}", response)

    async def query(self, collection_path: str, order_by: Optional[str] = None,
                    descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        names, _ = split_collection_path(collection_path)
        parent = collection_path.strip("/").rsplit("/", 1)[0] if len(names) > 1 else ""

        structured_query: Dict[str, Any] = {"from": [{"collectionId": names[-1]}]}
        if order_by:
            structured_query["orderBy"] = [{
                "field": {"fieldPath": order_by},
                "direction": "DESCENDING" if descending else "ASCENDING",
            }]
        if limit is not None:
            structured_query["limit"] = limit

        url = f"{self.base_url}/{parent}:runQuery" if parent else f"{self.base_url}:runQuery"
        response = await self._request(
            f"query {collection_path}", "POST", url,
            params=self._params(), json={"structuredQuery": structured_query},
        )
        operation = f"query {collection_path}"
        self._raise_for_status(operation, response)

        rows = self._read_json(operation, response)
        if not isinstance(rows, list):
            raise RemoteStoreError(operation, detail="runQuery response is not a list")

        documents = []
        for row in rows:
            document = row.get("document") if isinstance(row, dict) else None
            if document:
                documents.append(self._decode_document(operation, document))
        return documents

    async def ping(self) -> bool:
        try:
            response = await self._request("ping", "GET", f"{self.base_url}/users", params=self._params([("pageSize", "1")]))
        except RemoteStoreError:
            return False
        return response.status_code == 200

    async def close(self):
        await self.client.aclose()
