from fastapi import APIRouter, Depends, HTTPException, Query
from storechat.dependencies import get_catalog_sync, get_db_path
from storechat.models.catalog import list_products
from storechat.models.schemas import ProductSummary, SyncResponse
from storechat.services.shopify import sync_catalog

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=list[ProductSummary])
async def list_catalog(
    limit: int = Query(default=50, ge=1, le=250),
    offset: int = Query(default=0, ge=0),
    db_path: str = Depends(get_db_path),
):
    products = await list_products(db_path, limit=limit, offset=offset)
    return [ProductSummary(**p) for p in products]


@router.post("/sync", response_model=SyncResponse)
async def sync_products(
    sync=Depends(get_catalog_sync),
    db_path: str = Depends(get_db_path),
):
    client, digest = sync
    if client is None:
        raise HTTPException(status_code=503, detail="Shopify is not configured")

    synced = await sync_catalog(client, db_path)
    digest.invalidate()
    return SyncResponse(synced=synced)
