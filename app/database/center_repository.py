"""
Inspection center directory: display name, call-to-action values and the
WhatsApp template each center registered.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import structlog
from supabase import Client

from app.core.retry import create_retry_decorator, get_database_retry_config
from app.database.client import execute_query
from app.models.case import CenterConfig

logger = structlog.get_logger(__name__)

CENTERS_TABLE = "tech_centers"
CENTER_SELECT = "id, name, phone, short_url, network, template_name"


class CenterDirectory(ABC):

    @abstractmethod
    async def get_center(
        self, center_id: Optional[str] = None, center_name: Optional[str] = None
    ) -> Optional[CenterConfig]:
        """Look a center up by id, falling back to its name."""


class InMemoryCenterDirectory(CenterDirectory):

    def __init__(self, centers: Optional[Iterable[CenterConfig]] = None):
        self._centers: Dict[str, CenterConfig] = {}
        for center in centers or []:
            self.add_center(center)

    def add_center(self, center: CenterConfig) -> None:
        self._centers[center.id or center.name] = center

    async def get_center(
        self, center_id: Optional[str] = None, center_name: Optional[str] = None
    ) -> Optional[CenterConfig]:
        if center_id and center_id in self._centers:
            return self._centers[center_id]
        if center_name:
            for center in self._centers.values():
                if center.name == center_name:
                    return center
        return None


class SupabaseCenterDirectory(CenterDirectory):
    """Reads the ``tech_centers`` table."""

    def __init__(self, client: Client, read_retry_attempts: int = 3):
        self.client = client
        self._retry = create_retry_decorator(
            get_database_retry_config(read_retry_attempts), operation="center lookup"
        )

    async def get_center(
        self, center_id: Optional[str] = None, center_name: Optional[str] = None
    ) -> Optional[CenterConfig]:
        if not center_id and not center_name:
            return None

        query = self.client.table(CENTERS_TABLE).select(CENTER_SELECT)
        if center_id:
            query = query.eq("id", center_id)
        else:
            query = query.eq("name", center_name)

        response = self._retry(execute_query)(query.limit(1), "get_center")
        rows = response.data or []
        if not rows:
            logger.info("Center not found", center_id=center_id, center_name=center_name)
            return None

        row = rows[0]
        return CenterConfig(
            id=str(row["id"]) if row.get("id") is not None else None,
            name=row.get("name") or center_name or "",
            phone=row.get("phone"),
            short_url=row.get("short_url"),
            network=row.get("network"),
            template_name=row.get("template_name"),
        )
