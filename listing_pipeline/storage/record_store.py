from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime, timezone
from typing import Any

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from listing_pipeline.config import StorageSettings
from listing_pipeline.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


class RecordStore:
    """MongoDB-backed analysis records, one document per video file name.

    Writes never raise when the database is unreachable: the record is logged
    and a ``fallback_<file>_<epoch ms>`` identifier is returned instead.
    """

    def __init__(self, settings: StorageSettings, collection: Any | None = None) -> None:
        self._settings = settings
        self._collection = collection

    def store_raw(self, file_name: str, data: dict[str, Any]) -> str:
        if not file_name:
            raise ValueError("file_name is required to store raw annotations.")

        document = {
            "fileName": file_name,
            "status": "unprocessed",
            "unprocessed": clean_for_storage(
                {
                    "transcription": data.get("transcription") or "",
                    "transcriptSegments": data.get("transcriptSegments") or [],
                    "objects": data.get("objects") or [],
                    "labels": data.get("labels") or [],
                    "text": data.get("text") or [],
                    "driveFileId": data.get("driveFileId"),
                    "timestamp": _utcnow(),
                }
            ),
            "lastUpdated": _utcnow(),
        }
        return self._upsert(file_name, document, fallback_summary=_raw_fallback_summary(data))

    def store_processed(self, file_name: str, raw_id: str, data: dict[str, Any]) -> str:
        if not file_name or not raw_id:
            raise ValueError("file_name and raw_id are required to store a processed listing.")

        document = {
            "fileName": file_name,
            "status": "processed",
            "processed": clean_for_storage(
                {
                    "rawId": raw_id,
                    "driveFileId": data.get("driveFileId"),
                    "propertyDetails": data.get("propertyDetails") or {},
                    "metadata": data.get("metadata") or {},
                    "timestamp": _utcnow(),
                }
            ),
            "lastUpdated": _utcnow(),
        }
        return self._upsert(
            file_name,
            document,
            fallback_summary={"rawId": raw_id, "propertyDetails": data.get("propertyDetails") or {}},
        )

    def get_analysis(self, file_name: str) -> dict[str, Any] | None:
        try:
            collection = self._get_collection()
            return collection.find_one({"_id": file_name})
        except (PyMongoError, StorageUnavailableError) as exc:
            logger.error("Could not read analysis for %s: %s", file_name, exc)
            return None

    def _upsert(self, file_name: str, document: dict[str, Any], *, fallback_summary: dict[str, Any]) -> str:
        try:
            collection = self._get_collection()
            collection.update_one({"_id": file_name}, {"$set": document}, upsert=True)
        except (PyMongoError, StorageUnavailableError) as exc:
            logger.warning("Record store unavailable for %s (%s); using fallback record.", file_name, exc)
            return self._store_fallback(file_name, document["status"], fallback_summary)

        logger.info("Stored %s record for %s", document["status"], file_name)
        return file_name

    def _store_fallback(self, file_name: str, status: str, summary: dict[str, Any]) -> str:
        fallback_id = f"fallback_{file_name}_{int(time.time() * 1000)}"
        record = {"fileName": file_name, "status": f"{status}_fallback", **clean_for_storage(summary)}
        logger.info("Fallback record %s: %s", fallback_id, json.dumps(record, default=str, ensure_ascii=False))
        return fallback_id

    def _get_collection(self) -> Any:
        if self._collection is not None:
            return self._collection

        try:
            client: MongoClient = MongoClient(
                self._settings.mongo_uri,
                serverSelectionTimeoutMS=self._settings.server_selection_timeout_ms,
            )
            client.admin.command("ping")
        except PyMongoError as exc:
            raise StorageUnavailableError(f"MongoDB at {self._settings.mongo_uri} is unreachable: {exc}") from exc

        self._collection = client[self._settings.database][self._settings.collection]
        logger.info("Connected record store to %s.%s", self._settings.database, self._settings.collection)
        return self._collection


def clean_for_storage(value: Any) -> Any:
    """Drop None mapping values and turn datetimes/tuples into storable types."""

    if isinstance(value, dict):
        return {str(key): clean_for_storage(item) for key, item in value.items() if item is not None}
    if isinstance(value, list | tuple):
        return [clean_for_storage(item) for item in value]
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def _raw_fallback_summary(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "transcription": data.get("transcription") or "",
        "objectsCount": len(data.get("objects") or []),
        "labelsCount": len(data.get("labels") or []),
        "textCount": len(data.get("text") or []),
        "driveFileId": data.get("driveFileId"),
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
