import argparse
import json
import logging
import sys
import uuid

from sqlalchemy import select

from olxsync.models import OlxListing, Product, Shop
from olxsync.session_factory import session_factory

# logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("olxsync.cli")


def _load_shop(session, shop_id: str) -> Shop:
    shop = session.get(Shop, uuid.UUID(shop_id))
    if shop is None:
        raise SystemExit(f"Shop {shop_id} not found")
    return shop


def _load_product(session, shop: Shop, product_id: str) -> Product:
    product = session.scalar(
        select(Product).where(Product.id == uuid.UUID(product_id), Product.shop_id == shop.id)
    )
    if product is None:
        raise SystemExit(f"Product {product_id} not found in shop {shop.id}")
    return product


def _load_listing(session, shop: Shop, product_id: str) -> OlxListing:
    product = _load_product(session, shop, product_id)
    if product.olx_listing is None:
        raise SystemExit(f"Product {product_id} has no OLX listing")
    return product.olx_listing


def _print(result) -> None:
    if hasattr(result, "to_dict"):
        result = result.to_dict()
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


def run_catalog_command(args, session, shop):
    from olxsync.services.catalog.category_sync import CategorySyncService
    from olxsync.services.catalog.location_sync import LocationSyncService
    from olxsync.services.catalog.setup import OlxSetupService

    if args.command == "setup":
        return OlxSetupService(session, shop).setup_all()
    if args.command == "sync-categories":
        return CategorySyncService(session, shop).sync_all_categories()
    if args.command == "sync-attributes":
        return CategorySyncService(session, shop).sync_all_attributes(leaf_only=not args.all)
    if args.command == "sync-locations":
        service = LocationSyncService(session, shop)
        return service.sync_cities() if args.cities else service.sync_locations()
    if args.command == "cleanup-categories":
        return {
            "categories_removed": CategorySyncService(session, shop).cleanup_removed(),
            "locations_removed": LocationSyncService(session, shop).cleanup_removed(),
        }
    if args.command == "seed-categories":
        with open(args.file, encoding="utf-8") as handle:
            nodes = json.load(handle)
        return CategorySyncService(session, shop).import_seed(nodes)
    return None


def run_listing_command(args, session, shop):
    from olxsync.services.listing.lifecycle import ListingLifecycleManager

    manager = ListingLifecycleManager(session, shop)
    if args.command == "publish":
        listing = manager.publish_product(_load_product(session, shop, args.product_id))
        return {"listing_id": str(listing.id), "external_listing_id": listing.external_listing_id, "status": listing.status, "url": listing.olx_url}
    if args.command == "update":
        listing = manager.update_listing(_load_listing(session, shop, args.product_id))
        return {"external_listing_id": listing.external_listing_id, "status": listing.status}
    if args.command == "unpublish":
        listing = manager.unpublish_listing(_load_listing(session, shop, args.product_id))
        return {"external_listing_id": listing.external_listing_id, "status": listing.status}
    if args.command == "delete":
        listing = manager.delete_listing(_load_listing(session, shop, args.product_id))
        return {"external_listing_id": listing.external_listing_id, "status": listing.status}
    if args.command == "reconnect":
        outcome = manager.reconnect_listing(_load_product(session, shop, args.product_id), args.external_id)
        return {"reconnected": outcome.reconnected, "message": outcome.message}
    return None


def run_command(args):
    """Run one subcommand for the shop and print its result as JSON."""
    session = session_factory()
    try:
        shop = _load_shop(session, args.shop_id)

        result = run_catalog_command(args, session, shop)
        if result is None:
            result = run_listing_command(args, session, shop)
        if result is None and args.command == "sync-products":
            from olxsync.services.remote_sync import OlxSyncService

            result = OlxSyncService(session, shop).sync_products(
                limit=args.limit or None,
                status_filter=args.status or ("active",),
                category_ids=args.category or None,
                skip_existing=args.skip_existing,
            )
        if result is None and args.command == "scrape":
            from olxsync.services.scraper_runner import ScraperRunner

            result = ScraperRunner(session, shop).scrape_and_import(args.url, max_products=args.max_products)

        if result is None:
            logger.error(f"[CLI] Unsupported command: {args.command}")
            sys.exit(1)
        session.commit()
        _print(result)
    except SystemExit:
        raise
    except Exception as e:
        logger.exception(f"[CLI] Critical error: {e}")
        sys.exit(1)
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OLX listing sync CLI")
    parser.add_argument("--shop-id", required=True, help="Shop UUID")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("setup", help="Sync categories, attributes and cities")
    subparsers.add_parser("sync-categories", help="Mirror the OLX category tree")
    attributes = subparsers.add_parser("sync-attributes", help="Sync attribute definitions")
    attributes.add_argument("--all", action="store_true", help="Include non-leaf categories")
    locations = subparsers.add_parser("sync-locations", help="Sync OLX locations")
    locations.add_argument("--cities", action="store_true", help="Use the region/canton/city hierarchy")
    subparsers.add_parser("cleanup-categories", help="Delete categories and locations no longer on OLX")
    seed = subparsers.add_parser("seed-categories", help="Import categories from a JSON file")
    seed.add_argument("file")

    products = subparsers.add_parser("sync-products", help="Pull the shop's OLX listings into products")
    products.add_argument("--limit", type=int, default=10, help="0 for no limit")
    products.add_argument("--status", action="append", help="Remote status to include (repeatable)")
    products.add_argument("--category", type=int, action="append", help="OLX category id (repeatable)")
    products.add_argument("--skip-existing", action="store_true")

    for name in ("publish", "update", "unpublish", "delete"):
        sub = subparsers.add_parser(name, help=f"{name.capitalize()} a product's OLX listing")
        sub.add_argument("product_id")
    reconnect = subparsers.add_parser("reconnect", help="Re-link a product to an existing OLX listing")
    reconnect.add_argument("product_id")
    reconnect.add_argument("--external-id")

    scrape = subparsers.add_parser("scrape", help="Run the scraper and import its products")
    scrape.add_argument("url")
    scrape.add_argument("--max-products", type=int, default=10)
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.command:
        run_command(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
