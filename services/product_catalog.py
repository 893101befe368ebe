"""Brand/product lookup used to attach purchase links to recommendations"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class CatalogEntry:
    """Purchase link and image for a catalog product"""
    url: str
    image: Optional[str] = None


class ProductCatalog(ABC):
    """Lookup capability; swap in a real catalog service without touching the normalizer"""

    @abstractmethod
    def lookup(self, brand: str, product: str) -> Optional[CatalogEntry]:
        pass


def _jumia(query: str) -> str:
    return f"https://www.jumia.co.ke/catalog/?q={query}"


# brand -> product keyword -> entry
STATIC_CATALOG: Dict[str, Dict[str, CatalogEntry]] = {
    "maybelline": {
        "fit me": CatalogEntry(_jumia("maybelline+fit+me+foundation")),
        "superstay": CatalogEntry(_jumia("maybelline+superstay")),
        "lash sensational": CatalogEntry(_jumia("maybelline+lash+sensational")),
        "colossal": CatalogEntry(_jumia("maybelline+colossal")),
        "color sensational": CatalogEntry(_jumia("maybelline+color+sensational")),
    },
    "fenty": {
        "pro filt'r": CatalogEntry(_jumia("fenty+pro+filtr")),
        "gloss bomb": CatalogEntry(_jumia("fenty+gloss+bomb")),
        "match stix": CatalogEntry(_jumia("fenty+match+stix")),
    },
    "zaron": {
        "foundation": CatalogEntry(_jumia("zaron+foundation")),
        "lipstick": CatalogEntry(_jumia("zaron+lipstick")),
        "powder": CatalogEntry(_jumia("zaron+powder")),
    },
    "huddah": {
        "lip": CatalogEntry(_jumia("huddah+cosmetics+lipstick")),
        "lashes": CatalogEntry(_jumia("huddah+lashes")),
    },
    "mac": {
        "studio fix": CatalogEntry(_jumia("mac+studio+fix")),
        "lipstick": CatalogEntry(_jumia("mac+lipstick")),
    },
    "nivea": {
        "sun": CatalogEntry(_jumia("nivea+sun+spf")),
        "cleanser": CatalogEntry(_jumia("nivea+cleanser")),
        "moisturi": CatalogEntry(_jumia("nivea+moisturizer")),
    },
    "cerave": {
        "cleanser": CatalogEntry(_jumia("cerave+cleanser")),
        "moisturi": CatalogEntry(_jumia("cerave+moisturizing+cream")),
        "sunscreen": CatalogEntry(_jumia("cerave+sunscreen")),
    },
    "the ordinary": {
        "niacinamide": CatalogEntry(_jumia("the+ordinary+niacinamide")),
        "hyaluronic": CatalogEntry(_jumia("the+ordinary+hyaluronic+acid")),
        "azelaic": CatalogEntry(_jumia("the+ordinary+azelaic+acid")),
    },
    "garnier": {
        "micellar": CatalogEntry(_jumia("garnier+micellar+water")),
        "vitamin c": CatalogEntry(_jumia("garnier+vitamin+c+serum")),
    },
}


class StaticProductCatalog(ProductCatalog):
    """
    Catalog backed by an in-memory brand/product table

    Matching is substring containment in either direction, case-insensitive,
    on both the brand name and the product keyword.
    """

    def __init__(self, table: Optional[Dict[str, Dict[str, CatalogEntry]]] = None):
        self.table = table if table is not None else STATIC_CATALOG

    @staticmethod
    def _contains(a: str, b: str) -> bool:
        return bool(a) and bool(b) and (a in b or b in a)

    def lookup(self, brand: str, product: str) -> Optional[CatalogEntry]:
        brand_key = (brand or "").strip().lower()
        product_key = (product or "").strip().lower()
        if not brand_key or not product_key:
            return None

        for catalog_brand, products in self.table.items():
            if not self._contains(catalog_brand, brand_key):
                continue
            for keyword, entry in products.items():
                if keyword in product_key:
                    return entry
        return None
