import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from app_logger import get_logger
from config import settings
from database import get_db, utcnow
from schemas import AppVersionConfig
from security import require_admin

log = get_logger("app_version")

router = APIRouter(prefix="/api/app", tags=["app"])

VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
CONFIG_KEY = "app_version"


def _version_parts(version: str) -> List[int]:
    parts = []
    for piece in version.strip().split("."):
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group()) if digits else 0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """-1, 0 or 1 comparing dotted integer versions; missing parts count as 0."""
    left, right = _version_parts(a), _version_parts(b)
    length = max(len(left), len(right))
    left += [0] * (length - len(left))
    right += [0] * (length - len(right))
    return (left > right) - (left < right)


def is_valid_version(version: str) -> bool:
    return bool(VERSION_PATTERN.match(version or ""))


class VersionUpdateRequest(BaseModel):
    latestVersion: str
    downloadUrl: Optional[str] = None
    forceUpdate: Optional[bool] = None
    message: Optional[str] = None
    minimumSupportedVersion: Optional[str] = None


class AppVersionStore:
    """The persisted update-gating record, seeded from settings on first read."""

    def __init__(self, database: Database):
        self.collection = database["appconfig"]

    @staticmethod
    def defaults() -> AppVersionConfig:
        return AppVersionConfig(
            latest_version=settings.APP_LATEST_VERSION,
            download_url=settings.APP_DOWNLOAD_URL,
            force_update=False,
            message=settings.APP_UPDATE_MESSAGE,
            minimum_supported_version=settings.APP_MINIMUM_SUPPORTED_VERSION,
        )

    def get(self) -> AppVersionConfig:
        doc = self.collection.find_one({"key": CONFIG_KEY})
        if doc is None:
            return self.defaults()
        return AppVersionConfig.model_validate(doc)

    def update(self, values: dict) -> AppVersionConfig:
        current = self.get().model_dump()
        current.update(values)
        current["updated_at"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"key": CONFIG_KEY},
            {"$set": current},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return AppVersionConfig.model_validate(doc)


def get_app_version_store(database: Database = Depends(get_db)) -> AppVersionStore:
    return AppVersionStore(database)


@router.get("/version")
def get_version(
    version: Optional[str] = None,
    app_version: Optional[str] = Header(None),
    store: AppVersionStore = Depends(get_app_version_store),
):
    config = store.get()
    client_version = version or app_version
    force_update = config.force_update
    if client_version and compare_versions(client_version, config.minimum_supported_version) < 0:
        force_update = True

    return {
        "latestVersion": config.latest_version,
        "downloadUrl": config.download_url,
        "forceUpdate": force_update,
        "message": config.message,
        "minimumSupportedVersion": config.minimum_supported_version,
        "serverTime": utcnow().isoformat() + "Z",
    }


@router.put("/version")
def update_version(
    payload: VersionUpdateRequest,
    admin: dict = Depends(require_admin),
    store: AppVersionStore = Depends(get_app_version_store),
):
    if not is_valid_version(payload.latestVersion):
        raise HTTPException(status_code=400, detail="Invalid version format")
    if payload.minimumSupportedVersion and not is_valid_version(payload.minimumSupportedVersion):
        raise HTTPException(status_code=400, detail="Invalid version format")

    values = {"latest_version": payload.latestVersion}
    if payload.downloadUrl:
        values["download_url"] = payload.downloadUrl
    if payload.forceUpdate is not None:
        values["force_update"] = payload.forceUpdate
    if payload.message:
        values["message"] = payload.message
    if payload.minimumSupportedVersion:
        values["minimum_supported_version"] = payload.minimumSupportedVersion

    config = store.update(values)
    log.info("App version config updated", extra={"latest_version": config.latest_version, "by": str(admin["_id"])})
    return {
        "success": True,
        "message": "Version configuration updated successfully",
        "config": config.model_dump(by_alias=True, mode="json"),
    }


@router.get("/version/config")
def get_version_config(
    admin: dict = Depends(require_admin),
    store: AppVersionStore = Depends(get_app_version_store),
):
    return store.get().model_dump(by_alias=True, mode="json")
