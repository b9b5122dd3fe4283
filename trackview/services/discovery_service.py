import logging
from typing import Callable, Optional

from trackview.models.fields import is_fuel_channel
from trackview.storage.flux_queries import FluxQueryBuilder
from trackview.storage.store_client import StoreClient, get_store_client

logger = logging.getLogger(__name__)

MIN_IDENTIFIER_LENGTH = 6


def distinct_values(
    rows: list[dict],
    column: str,
    accept: Optional[Callable[[str], bool]] = None,
) -> list[str]:
    values = set()
    for row in rows:
        raw = row.get(column) or row.get("_value")
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if not value:
            continue
        if accept and not accept(value):
            continue
        values.add(value)
    return sorted(values)


def _is_identifier(value: str) -> bool:
    return len(value) >= MIN_IDENTIFIER_LENGTH


class DiscoveryService:
    """Identifier, field and fuel-channel discovery.

    Every lookup runs a primary query and, when it yields nothing usable, a
    differently shaped fallback. An empty result is a valid answer; only a
    failed query propagates.
    """

    def __init__(self, store: StoreClient = None, queries: FluxQueryBuilder = None):
        self.store = store or get_store_client()
        self.queries = queries or self.store.queries

    async def _discover(
        self,
        label: str,
        primary: str,
        fallback: str,
        column: str,
        accept: Optional[Callable[[str], bool]] = None,
    ) -> list[str]:
        rows = await self.store.execute(primary)
        values = distinct_values(rows, column, accept)
        if values:
            return values

        logger.debug(f"Primary {label} query returned nothing, trying fallback query")
        rows = await self.store.execute(fallback)
        values = distinct_values(rows, column, accept)
        logger.debug(f"Fallback {label} query found {len(values)} values")
        return values

    async def list_identifiers(self) -> list[str]:
        tag = self.queries.identifier_tag
        identifiers = await self._discover(
            "identifier",
            self.queries.identifiers(),
            self.queries.identifiers_fallback(),
            tag,
            _is_identifier,
        )
        logger.info(f"Found {len(identifiers)} unique identifiers")
        return identifiers

    async def list_fields(self, identifier: str) -> list[str]:
        fields = await self._discover(
            "field",
            self.queries.fields(identifier),
            self.queries.fields_fallback(identifier),
            "_field",
        )
        logger.info(f"Found {len(fields)} fields for {identifier}: {', '.join(fields)}")
        return fields

    async def list_fuel_channels(self, identifier: str) -> list[str]:
        channels = await self._discover(
            "fuel channel",
            self.queries.fuel_channels(identifier),
            self.queries.fuel_channels_fallback(identifier),
            "_field",
            is_fuel_channel,
        )

        if not channels:
            logger.warning(
                f"No fuel channels found for {identifier}, deriving them from its fields"
            )
            fields = await self.list_fields(identifier)
            channels = [field for field in fields if is_fuel_channel(field)]

        logger.info(
            f"Found {len(channels)} fuel channels for {identifier}: {', '.join(channels)}"
        )
        return channels


_service = DiscoveryService()


def get_discovery_service() -> DiscoveryService:
    return _service
