"""CLI entrypoint for the content maintenance engine."""

from __future__ import annotations

import argparse
import logging
import os

from dotenv import load_dotenv

from article_writer import write_article
from classifier import classify_document
from cms_client import CmsClient
from config import CmsSettings, Policy
from engine import MaintenanceEngine
from fetcher import check_url, crawl, fetch_document
from generation import Generator
from markup import host_of
from models import EngineContext
from publisher import Publisher, PublishTargetResolver
from reference_client import is_configured as references_configured
from reference_client import search_references
from schedule_store import JsonFileSchedulingStore
from sitemap_feed import fetch_pages, parse_document


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Keep published articles fresh: classify, repair and republish")
    subcommands = parser.add_subparsers(dest="command", required=True)

    run_parser = subcommands.add_parser("run", help="Run the maintenance loop over the site's sitemap")
    run_parser.add_argument("--once", action="store_true", help="Process every due document once, then exit")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only classify documents and log what would be updated, without generation or CMS writes",
    )
    run_parser.add_argument("--sitemap", default=None, help="Sitemap URL (default: SITEMAP_URL or <WP_URL>/sitemap.xml)")
    run_parser.add_argument("--limit", type=int, default=None, help="Maximum number of sitemap documents to consider")

    classify_parser = subcommands.add_parser("classify", help="Classify one live article without changing it")
    classify_parser.add_argument("url", help="Public URL of the article")
    classify_parser.add_argument("--title", default=None, help="Article title (default: derived from the slug)")

    new_parser = subcommands.add_parser("new", help="Generate a new article and publish it")
    new_parser.add_argument("title", help="Title of the article to write")
    new_parser.add_argument("--status", default="draft", choices=["draft", "publish"], help="CMS status for the new record")
    new_parser.add_argument("--dry-run", action="store_true", help="Generate only, do not publish")

    return parser.parse_args(argv)


def _build_context(settings: CmsSettings, sitemap_url: str | None, limit: int | None) -> EngineContext:
    sitemap = sitemap_url or os.getenv("SITEMAP_URL") or f"{settings.url}/sitemap.xml"
    pages = fetch_pages(sitemap, limit=limit)
    logging.info("Loaded %s candidate documents from %s", len(pages), sitemap)
    keywords = [item.strip() for item in os.getenv("TARGET_KEYWORDS", "").split(",") if item.strip()]
    return EngineContext(
        site_url=settings.url,
        username=settings.username,
        password=settings.password,
        pages=pages,
        keywords=keywords,
        policy=Policy.from_env(),
    )


def run(once: bool, dry_run: bool, sitemap_url: str | None, limit: int | None) -> None:
    """Run the maintenance loop (or a single pass with ``once``)."""
    settings = CmsSettings.from_env()
    context = _build_context(settings, sitemap_url, limit)

    engine = MaintenanceEngine(
        store=JsonFileSchedulingStore(),
        generate=Generator(),
        search_references=search_references if references_configured() else None,
        check_url=check_url,
        dry_run=dry_run,
    )
    if not references_configured():
        logging.warning("PERPLEXITY_API_KEY is not set; reference blocks will not be added")

    if once:
        counts = engine.run_once(context)
        logging.info("Run complete. %s", " ".join(f"{key}={value}" for key, value in sorted(counts.items())) or "nothing due")
        return

    try:
        engine.start(context)
    except KeyboardInterrupt:
        engine.stop()
        logging.info("Interrupted, engine stopped")


def classify(url: str, title: str | None) -> None:
    """Fetch a live article and log the classifier verdict."""
    document = parse_document(url, None)
    if title:
        document.title = title
    markup = crawl(url)
    site_host = host_of(os.getenv("WP_URL", "")) or host_of(url) or None
    verdict = classify_document(document, markup, Policy.from_env(), site_host)
    logging.info(
        "Verdict for %s: should_update=%s reason=%s",
        url,
        verdict.should_update,
        verdict.reason,
    )


def new_article(title: str, status: str, dry_run: bool) -> None:
    """Write a new article through the quality gate and publish it."""
    policy = Policy.from_env()
    request = write_article(title, Generator(), policy, status=status)
    if dry_run:
        logging.info("[dry-run] Would publish %r (%s chars, slug=%s)", request.title, len(request.content), request.slug)
        return

    cms = CmsClient.from_settings(CmsSettings.from_env())
    outcome = Publisher(cms, PublishTargetResolver(cms, fetch_document)).publish(request)
    if not outcome.success:
        raise RuntimeError(f"Publishing {title!r} failed: {outcome.message}")
    logging.info("SUCCESS|%s|%s", request.title, outcome.link)


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the selected command."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.command == "classify":
        classify(args.url, args.title)
    elif args.command == "new":
        new_article(args.title, args.status, args.dry_run)
    else:
        run(once=args.once, dry_run=args.dry_run, sitemap_url=args.sitemap, limit=args.limit)


if __name__ == "__main__":
    main()
