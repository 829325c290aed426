"""
Image hosting gateway (Cloudflare Images): upload by URL, delete, and
delivery URL construction.
"""
from __future__ import annotations

import itertools
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from src.services.errors import ExternalServiceError
from src.services.gateways.http import build_session, request_json

PROVIDER = "cloudflare_images"
API_BASE = "https://api.cloudflare.com/client/v4/accounts/{account_id}/images/v1"
DELIVERY_BASE = "https://imagedelivery.net/{account_hash}/{image_id}/{variant}"


class ImageHostingGateway(ABC):
    name = PROVIDER

    @abstractmethod
    def upload_from_url(self, source_url: str, metadata: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Returns {"id"}."""

    @abstractmethod
    def delete_image(self, image_id: str) -> None:
        ...

    @abstractmethod
    def get_delivery_url(self, image_id: str, variant: str = "public") -> str:
        ...


class CloudflareImagesGateway(ImageHostingGateway):

    def __init__(self, account_id: str, api_key: str, account_hash: str, timeout: float = 30):
        self.base_url = API_BASE.format(account_id=account_id)
        self.account_hash = account_hash
        self.timeout = timeout
        self.session = build_session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _checked(self, data: Dict[str, Any], operation: str) -> Dict[str, Any]:
        if not data.get("success", False):
            errors = data.get("errors") or [{"message": "unknown error"}]
            raise ExternalServiceError(PROVIDER, f"{operation}: {errors[0].get('message')}")
        return data.get("result") or {}

    def upload_from_url(self, source_url, metadata=None):
        # multipart/form-data with plain fields, no file part
        form = {"url": (None, source_url)}
        if metadata:
            form["metadata"] = (None, json.dumps(dict(metadata)))
        data = request_json(self.session, PROVIDER, "POST", self.base_url,
                            timeout=self.timeout, operation="upload_from_url", files=form)
        result = self._checked(data, "upload_from_url")
        return {"id": result["id"]}

    def delete_image(self, image_id):
        data = request_json(self.session, PROVIDER, "DELETE", f"{self.base_url}/{image_id}",
                            timeout=self.timeout, operation="delete_image")
        self._checked(data, "delete_image")

    def get_delivery_url(self, image_id, variant="public"):
        return DELIVERY_BASE.format(account_hash=self.account_hash, image_id=image_id, variant=variant)


class StubImageHostingGateway(ImageHostingGateway):

    def __init__(self):
        self.uploads: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.fail_next: Optional[str] = None
        self._seq = itertools.count(1)

    def upload_from_url(self, source_url, metadata=None):
        if self.fail_next == "upload_from_url":
            self.fail_next = None
            raise ExternalServiceError(PROVIDER, "stub failure in upload_from_url")
        image_id = f"img_stub_{next(self._seq):06d}"
        self.uploads.append({"id": image_id, "source_url": source_url, "metadata": dict(metadata or {})})
        return {"id": image_id}

    def delete_image(self, image_id):
        self.deleted.append(image_id)

    def get_delivery_url(self, image_id, variant="public"):
        return DELIVERY_BASE.format(account_hash="stub", image_id=image_id, variant=variant)
