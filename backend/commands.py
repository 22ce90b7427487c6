from datetime import datetime, timezone

import click
from cloudinary.exceptions import Error as CloudinaryError
from pymongo import ASCENDING, DESCENDING

from backend import media

SAMPLE_PRODUCT = {
    "title": "Legends - Color Edition",
    "description": (
        "Dive into a world of enchanting myths and legendary creatures with our most "
        "intricate coloring book yet. Each page reveals a hidden masterpiece as you "
        "color by number, transforming simple tiles into breathtaking mosaic art."
    ),
    "shortDescription": (
        "34 unique mosaic illustrations inspired by myths and legends. Transform "
        "numbered tiles into stunning artwork."
    ),
    "theme": "Animals",
    "difficulty": "intermediate",
    "coverImage": "https://picsum.photos/seed/noble-cover/600/800",
    "galleryImages": [
        f"https://picsum.photos/seed/noble-g{index}/600/800" for index in range(1, 9)
    ],
    "amazonLink": "https://www.amazon.com/dp/example",
    "bulletPoints": [
        "34 unique mosaic illustrations inspired by myths and legends",
        "Color palette on every page with shade testers for perfect matching",
        "QR code on every page to reveal the original hidden artwork",
    ],
    "aPlusContent": [
        {
            "type": "fullWidth",
            "title": "Discover the Art Hidden in Every Tile",
            "content": (
                "Each mosaic conceals a breathtaking illustration. As you color tile "
                "by tile, a legendary creature emerges from the pattern."
            ),
            "image": "https://picsum.photos/seed/noble-aplus1/1200/600",
        },
        {
            "type": "twoColumn",
            "title": "Bold Lines & 5x5mm Cells",
            "content": "Clear outlines and comfortable cells make neat coloring easy.",
            "image": "https://picsum.photos/seed/noble-aplus4/800/600",
        },
    ],
    "rating": 4.8,
    "reviewCount": 142,
    "price": "$12.99",
    "featured": True,
    "showRating": True,
    "editions": [],
}


def register_commands(app, db):
    """Attach the maintenance commands to ``app.cli``."""

    @app.cli.command("seed-product")
    def seed_product():
        """Insert the sample product unless it already exists."""
        from backend.app import slugify, utcnow

        slug = slugify(SAMPLE_PRODUCT["title"])
        if db.products.find_one({"slug": slug}):
            click.echo(f"Product {slug} already exists.")
            return

        now = utcnow()
        db.products.insert_one(
            {**SAMPLE_PRODUCT, "slug": slug, "createdAt": now, "updatedAt": now}
        )
        click.echo(f"Created product {slug}")

    @app.cli.command("secret-counts")
    def secret_counts():
        """Show how many secret images each book holds."""
        books = list(db.secretbooks.find())
        click.echo(f"Found {len(books)} books")

        for book in books:
            count = db.secretimages.count_documents({"secretBook": book["_id"]})
            click.echo(
                f"Book: {book.get('title')} ({book.get('slug')}) - Total Secrets: {count}"
            )
            if count:
                highest = db.secretimages.find_one(
                    {"secretBook": book["_id"]}, sort=[("order", DESCENDING)]
                )
                click.echo(f"  Max order: {highest.get('order')}")

    @app.cli.command("list-secrets")
    def list_secrets():
        """List every secret image ordered by position."""
        click.echo("Order | Created At | Color URL")
        click.echo("------|------------|----------")
        for secret in db.secretimages.find().sort("order", ASCENDING):
            created_at = secret.get("createdAt")
            if isinstance(created_at, datetime):
                created_at = created_at.replace(tzinfo=timezone.utc).isoformat()
            color_url = str(secret.get("colorImageUrl") or "")
            click.echo(f"{secret.get('order')} | {created_at} | {color_url[:50]}...")

    @app.cli.command("check-cloudinary")
    @click.argument("slug")
    def check_cloudinary(slug):
        """Count the Cloudinary assets stored for a secret book."""
        for variant in ("color", "uncolor"):
            prefix = f"secrets/{slug}/{variant}"
            try:
                count = media.count_resources(prefix)
            except CloudinaryError as exc:
                raise click.ClickException(f"Cloudinary lookup failed: {exc}")
            click.echo(f"{variant.capitalize()} Folder: {prefix} - Count: {count}")
