# publish.py
# Item publisher for ArcGIS Online user content
# - addItem: upload the FeatureCollection as a GeoJson item
# - publish: create a hosted feature service from that item
# - update: set tags/description/snippet on the published service item
# None of these calls is idempotent, so none of them is retried.

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests

from ..config.settings import PublishConfig, RemoteConfig
from ..domain.models import SeriesMetadata
from ..types import ConflictError, RemoteServiceError
from ..utils import read_arcgis_json, send_request

logger = logging.getLogger(__name__)

CONFLICT_MARKERS = ("already exists", "already exist")


def _is_conflict(message: Optional[str]) -> bool:
    return bool(message) and any(marker in message.lower() for marker in CONFLICT_MARKERS)


def format_extent(extent: Optional[tuple[float, float, float, float]]) -> Optional[str]:
    """`xmin,ymin,xmax,ymax` as expected by addItem, or None."""
    if not extent:
        return None
    return ",".join(f"{v:.6f}" for v in extent)


class ItemPublisher:
    """
    Publish a GeoJSON FeatureCollection as a hosted feature service.

    Usage:
        publisher = ItemPublisher(token, user_content_url, publish_config, remote_config)
        item_id = publisher.add_item(collection, title)
        service_item_id = publisher.publish_item(item_id, title)
        publisher.update_item(service_item_id, metadata)
    """

    def __init__(
        self,
        token: str,
        user_content_url: str,
        publish_config: Optional[PublishConfig] = None,
        remote: Optional[RemoteConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.user_content_url = user_content_url.rstrip("/")
        self.publish_config = publish_config or PublishConfig()
        self.remote = remote or RemoteConfig()
        self.session = session or requests.Session()

    def _post(self, path: str, action: str, **kwargs) -> dict[str, Any]:
        response = send_request(
            self.session, "POST", f"{self.user_content_url}/{path}", self.remote.timeout_s, **kwargs
        )
        return read_arcgis_json(response, action)

    # ----------------------------
    # addItem
    # ----------------------------
    def add_item(
        self,
        collection: dict[str, Any],
        title: str,
        extent: Optional[tuple[float, float, float, float]] = None,
    ) -> str:
        """
        Upload the collection as a GeoJson item.

        Returns:
            The new item id

        Raises:
            RemoteServiceError: the portal rejected the upload or returned no id
        """
        body = json.dumps(collection).encode("utf-8")
        data = {"title": title, "type": "GeoJson", "f": "json", "token": self.token}
        item_extent = format_extent(extent)
        if item_extent:
            data["extent"] = item_extent

        filename = f"{title}.geojson"
        logger.info(f"Uploading '{title}' ({len(body) / 1024:.1f} KB) as {filename}")

        payload = self._post(
            "addItem",
            "Add item",
            data=data,
            files={"file": (filename, body, "application/json")},
        )
        item_id = payload.get("id")
        if not item_id:
            raise RemoteServiceError("Add item: response did not include an item id")

        logger.info(f"Added GeoJson item {item_id}")
        return item_id

    # ----------------------------
    # publish
    # ----------------------------
    def publish_parameters(self, title: str) -> dict[str, Any]:
        return {
            "hasStaticData": self.publish_config.has_static_data,
            "name": title,
            "maxRecordCount": self.publish_config.max_record_count,
            "layerInfo": {"capabilities": self.publish_config.capabilities},
        }

    def publish_item(self, item_id: str, title: str) -> str:
        """
        Publish the GeoJson item as a hosted feature service.

        Returns:
            The service item id

        Raises:
            ConflictError: a service with this title already exists
            RemoteServiceError: publish failed or reported no service
        """
        data = {
            "itemId": item_id,
            "f": "json",
            "token": self.token,
            "filetype": "geojson",
            "overwrite": "false",
            "publishParameters": json.dumps(self.publish_parameters(title)),
        }

        logger.info(f"Publishing item {item_id} as '{title}'")
        try:
            payload = self._post("publish", "Publish", data=data)
        except RemoteServiceError as e:
            if _is_conflict(e.message):
                raise ConflictError(
                    f"Unable to publish layer '{title}'. A service with that name already exists."
                ) from e
            raise

        services = payload.get("services") or []
        if not services or not isinstance(services[0], dict):
            raise RemoteServiceError("Unable to publish layer. No serviceItemId in response")

        service = services[0]
        error = service.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        if service.get("success") is False or error:
            if service.get("success") is False or _is_conflict(message):
                raise ConflictError(
                    f"Unable to publish layer '{title}'. A service with that name may already exist."
                    + (f" ({message})" if message else "")
                )
            raise RemoteServiceError(f"Publish: {message}")

        service_item_id = service.get("serviceItemId")
        if not service_item_id:
            raise RemoteServiceError("Unable to publish layer. No serviceItemId in response")

        logger.info(f"Published feature service {service_item_id}")
        return service_item_id

    # ----------------------------
    # update
    # ----------------------------
    def update_item(self, item_id: str, metadata: SeriesMetadata) -> None:
        """
        Set tags, description and snippet on a published item.

        Raises:
            RemoteServiceError: the portal rejected the update
        """
        data = {"f": "json", "token": self.token}
        tags = metadata.render_tags()
        description = metadata.render_description()
        if tags:
            data["tags"] = ",".join(tags)
        if description:
            data["description"] = description
        if metadata.snippet:
            data["snippet"] = metadata.snippet

        payload = self._post(f"items/{item_id}/update", "Update item", data=data)
        if payload.get("success") is False:
            raise RemoteServiceError(f"Update item: portal reported failure for {item_id}")

        logger.info(f"Updated item {item_id} metadata ({len(tags)} tags)")
