"""
Coverage scan: which GTINs does each merchant carry, and which exist anywhere.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set
import logging

from settings import READ_PAGE_SIZE

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value] if value else []


@dataclass(frozen=True)
class GtinSample:
    """Product details copied from the first stored record carrying a GTIN."""
    gtin: str
    item_name: Optional[str] = None
    variation_name: Optional[str] = None
    sku: Optional[str] = None
    category_name: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    image_urls: tuple = ()
    tax_ids: tuple = ()
    tax_names: tuple = ()
    tax_percentages: tuple = ()

    @classmethod
    def from_document(cls, gtin: str, doc: Dict[str, Any]) -> "GtinSample":
        return cls(
            gtin=gtin,
            item_name=doc.get("item_name") or None,
            variation_name=doc.get("variation_name") or None,
            sku=doc.get("sku") or None,
            category_name=doc.get("category_name") or None,
            price=doc.get("price"),
            currency=doc.get("currency") or None,
            image_urls=tuple(_as_list(doc.get("image_urls"))),
            tax_ids=tuple(_as_list(doc.get("tax_ids"))),
            tax_names=tuple(_as_list(doc.get("tax_names"))),
            tax_percentages=tuple(_as_list(doc.get("tax_percentages"))),
        )


@dataclass(frozen=True)
class DefaultLocation:
    location_id: Optional[str]
    location_name: Optional[str]


@dataclass
class CoverageState:
    """Accumulator threaded through one coverage run."""
    gtins_by_merchant: Dict[str, Set[str]] = field(default_factory=dict)
    global_gtins: Set[str] = field(default_factory=set)
    samples: Dict[str, GtinSample] = field(default_factory=dict)
    default_locations: Dict[str, DefaultLocation] = field(default_factory=dict)
    docs_scanned: Dict[str, int] = field(default_factory=dict)
    unscanned: List[str] = field(default_factory=list)
    limit_reached: bool = False

    @property
    def scanned_merchants(self) -> List[str]:
        return list(self.gtins_by_merchant)

    def missing_for(self, merchant_id: str) -> List[str]:
        """Sorted union GTINs the merchant does not carry."""
        if merchant_id not in self.gtins_by_merchant:
            raise KeyError(f"merchant {merchant_id} was not scanned")
        return sorted(self.global_gtins - self.gtins_by_merchant[merchant_id])


class CoverageScanner:
    """Reads every merchant's stored inventory in key order.

    With `sample_limit`, scanning stops as soon as the global union holds that
    many GTINs; merchants not reached are listed in `state.unscanned`.
    """

    def __init__(self, store, *, page_size: int = READ_PAGE_SIZE, sample_limit: Optional[int] = None):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.store = store
        self.page_size = page_size
        self.sample_limit = sample_limit

    async def scan(self, merchant_ids: Iterable[str], state: Optional[CoverageState] = None) -> CoverageState:
        state = state if state is not None else CoverageState()
        for merchant_id in merchant_ids:
            if state.limit_reached:
                state.unscanned.append(merchant_id)
                continue
            await self.scan_merchant(merchant_id, state)

        logger.info("Global union: %d distinct GTINs across %d merchant(s)",
                    len(state.global_gtins), len(state.gtins_by_merchant))
        if state.unscanned:
            logger.info("GTIN sample limit left merchants unscanned: %s", state.unscanned)
        return state

    async def scan_merchant(self, merchant_id: str, state: CoverageState) -> None:
        gtins = state.gtins_by_merchant.setdefault(merchant_id, set())
        total = state.docs_scanned.get(merchant_id, 0)
        last_key = None

        while not state.limit_reached:
            docs = await self.store.page_merchant_inventory(
                merchant_id, limit=self.page_size, start_after=last_key
            )
            if not docs:
                logger.info("Merchant %s: no more inventory docs to read.", merchant_id)
                break
            total += len(docs)
            logger.info("Merchant %s: read page with %d docs (total so far: %d)", merchant_id, len(docs), total)

            for doc in docs:
                self._observe(merchant_id, doc, gtins, state)
                if self.sample_limit and len(state.global_gtins) >= self.sample_limit:
                    logger.info("Global GTIN sample limit %d reached, stopping collection early.", self.sample_limit)
                    state.limit_reached = True
                    break
            last_key = docs[-1]["id"]

        state.docs_scanned[merchant_id] = total
        logger.info("Merchant %s: collected %d distinct GTINs (from %d docs).", merchant_id, len(gtins), total)

    def _observe(self, merchant_id: str, doc: Dict[str, Any], gtins: Set[str], state: CoverageState) -> None:
        gtin = doc.get("gtin")
        if not gtin:
            return

        if merchant_id not in state.default_locations and (doc.get("location_id") or doc.get("location_name")):
            state.default_locations[merchant_id] = DefaultLocation(
                location_id=doc.get("location_id") or None,
                location_name=doc.get("location_name") or None,
            )

        gtins.add(gtin)
        state.global_gtins.add(gtin)
        if gtin not in state.samples:
            state.samples[gtin] = GtinSample.from_document(gtin, doc)
