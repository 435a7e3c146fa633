"""Remote product -> local product resolution."""

import logging
from typing import List, Optional

from ifood_errors import MappingNotFoundError
from ifood_models import ProductMapping, RemoteOrderItem

logger = logging.getLogger(__name__)


class ProductMappingResolver:
    """Resolve by existing mapping first, then by SKU (creating the mapping)."""

    def __init__(self, store):
        self.store = store

    def resolve(self, remote_product_id: str, remote_sku: Optional[str] = None) -> str:
        remote_product_id = str(remote_product_id or '').strip()
        remote_sku = str(remote_sku or '').strip() or None

        if remote_product_id:
            mapping = self.store.get_mapping(remote_product_id)
            if mapping is not None:
                return mapping.local_product_id

        if remote_sku:
            local_product_id = self.store.find_product_by_sku(remote_sku)
            if local_product_id is not None:
                if remote_product_id:
                    self.create_mapping(remote_product_id, local_product_id, remote_sku)
                return local_product_id

        raise MappingNotFoundError(
            f'No local product for remote product {remote_product_id or "?"} (sku {remote_sku or "-"})'
        )

    def resolve_item(self, item: RemoteOrderItem) -> Optional[str]:
        """Resolve a line item; unmapped items are logged and left as None."""
        try:
            return self.resolve(item.remote_product_id, item.sku)
        except MappingNotFoundError as exc:
            logger.warning('Unmapped line item %r: %s', item.name, exc.message)
            return None

    def create_mapping(self, remote_product_id: str, local_product_id: str,
                       remote_sku: Optional[str] = None) -> ProductMapping:
        """Idempotent: a second call returns the row created by the first."""
        mapping = ProductMapping(
            remote_product_id=str(remote_product_id).strip(),
            local_product_id=str(local_product_id).strip(),
            remote_sku=remote_sku,
        )
        return self.store.insert_mapping(mapping)

    def list_mappings(self) -> List[ProductMapping]:
        return self.store.list_mappings()

    def delete_mapping(self, remote_product_id: str):
        remote_product_id = str(remote_product_id or '').strip()
        if not self.store.delete_mapping(remote_product_id):
            raise MappingNotFoundError(f'No mapping for remote product {remote_product_id or "?"}')
        logger.info('Product mapping for %s deleted', remote_product_id)
