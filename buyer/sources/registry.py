"""
Product sources: where the physical good comes from.
Each source knows how to pull its product code out of a URL, build the
checkout service's productLocator, and validate an identifier.
"""

import re
from typing import Dict, List, Optional

from buyer.errors import ValidationError

# Amazon ASIN: 10 uppercase alphanumerics as a whole path segment.
# Lookahead so adjacent segments can both match; the last one wins.
_ASIN_IN_URL = re.compile(r"/([A-Z0-9]{10})(?=/|\?|#|$)")
_ASIN = re.compile(r"^[A-Z0-9]{10}$")


class ProductSource:
    """Capability interface for a product source."""

    name: str = ""

    def extract_product_id(self, identifier: str) -> Optional[str]:
        raise NotImplementedError

    def create_product_locator(self, identifier: str, is_url: bool) -> str:
        raise NotImplementedError

    def validate_identifier(self, identifier: str, is_url: bool) -> bool:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"


class AmazonSource(ProductSource):
    name = "amazon"

    def extract_product_id(self, url: str) -> Optional[str]:
        matches = _ASIN_IN_URL.findall(url or "")
        return matches[-1] if matches else None

    def create_product_locator(self, identifier: str, is_url: bool) -> str:
        if is_url:
            asin = self.extract_product_id(identifier)
            return f"amazon:{asin}" if asin else f"amazon:{identifier}"
        return f"amazon:{identifier}"

    def validate_identifier(self, identifier: str, is_url: bool) -> bool:
        if is_url:
            return self.extract_product_id(identifier) is not None
        return bool(_ASIN.match(identifier or ""))


class SourceRegistry:
    """Product sources keyed by name."""

    def __init__(self):
        self._sources: Dict[str, ProductSource] = {}

    def register(self, source: ProductSource):
        if not source.name:
            raise ValueError("product source needs a name")
        self._sources[source.name] = source

    def get(self, name: str) -> Optional[ProductSource]:
        return self._sources.get(name)

    def all(self) -> List[ProductSource]:
        return list(self._sources.values())

    def names(self) -> List[str]:
        return list(self._sources)

    def validate_locator(self, locator: str) -> bool:
        """True for "<source>:<identifier>" where the source accepts the identifier."""
        name, sep, identifier = (locator or "").partition(":")
        source = self.get(name)
        if not sep or source is None or not identifier:
            return False
        return (source.validate_identifier(identifier, False)
                or source.validate_identifier(identifier, True))


source_registry = SourceRegistry()
source_registry.register(AmazonSource())


def extract_asin_from_url(url: str) -> Optional[str]:
    return source_registry.get("amazon").extract_product_id(url)


def create_product_locator(identifier: str, is_url: bool) -> str:
    return source_registry.get("amazon").create_product_locator(identifier, is_url)


def resolve_line_item(source_name: str, identifier: str, is_url: bool,
                      registry: SourceRegistry = source_registry) -> str:
    """Validate an identifier and return its productLocator. No network I/O."""
    source = registry.get(source_name)
    if source is None:
        raise ValidationError(f"Unsupported product source: {source_name}")
    if not source.validate_identifier(identifier, is_url):
        raise ValidationError(
            f"Invalid product identifier for source {source_name}: {identifier}"
        )
    return source.create_product_locator(identifier, is_url)
