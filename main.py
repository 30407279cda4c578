import argparse, asyncio, logging
from src.crawlstore.archive import archive_urls, describe_url
from src.crawlstore.config import DATA_DIR, HttpConfig, PoolSettings, ProcessorSettings, StoreParameters, get_user_agent
from src.crawlstore.errors import ConfigurationError

if __name__ == "__main__":
    p = argparse.ArgumentParser(
        description="Fetch URLs and archive them into content-addressed url/content tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s https://example.com
  %(prog)s https://example.com https://example.org --only-new
  %(prog)s https://example.com --show
  %(prog)s https://example.com --data-dir /tmp/archive --pool-max-active 2
        """
    )

    # Required arguments
    p.add_argument("urls", nargs="+", help="URLs to fetch and archive")

    # Storage
    p.add_argument("--data-dir", default=DATA_DIR,
                   help=f"Directory holding the table files (default: {DATA_DIR})")
    p.add_argument("--url-table", default=None, help="URL table name (default: url)")
    p.add_argument("--content-table", default=None, help="Content table name (default: content)")
    p.add_argument("--show", action="store_true",
                   help="Only show what is stored for the given URLs, do not fetch")

    # Writing behaviour
    p.add_argument("--only-new", action="store_true",
                   help="Skip URLs that already have a row in the URL table")
    p.add_argument("--max-content-size", type=int, default=None,
                   help="Largest content in bytes that is written (default: 20 MiB)")
    p.add_argument("--max-total-bytes", type=int, default=None,
                   help="Stop reporting PROCEED after this many bytes are written (default: no limit)")
    p.add_argument("--pool-max-active", type=int, default=None,
                   help="Maximum open writers (default: 5)")
    p.add_argument("--pool-max-wait", type=int, default=None,
                   help="Milliseconds to wait for a free writer (default: 20000)")

    # HTTP configuration
    p.add_argument("--user-agent", choices=["default", "chrome", "firefox", "random"],
                   default="default", help="User agent type to use (default: default)")
    p.add_argument("--timeout", type=int, default=None,
                   help="Request timeout in seconds (default: 20)")
    p.add_argument("--concurrency", type=int, default=None,
                   help="Maximum concurrent requests (default: 10)")

    # Output and logging
    p.add_argument("--verbose", "-v", action="store_true",
                   help="Enable verbose output")
    p.add_argument("--quiet", "-q", action="store_true",
                   help="Suppress non-error output")

    args = p.parse_args()

    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        overrides = {}
        if args.url_table:
            overrides["url_table_name"] = args.url_table
        if args.content_table:
            overrides["content_table_name"] = args.content_table
        params = StoreParameters(**overrides)

        pool_settings = PoolSettings(
            max_active=args.pool_max_active if args.pool_max_active is not None else PoolSettings().max_active,
            max_wait_ms=args.pool_max_wait if args.pool_max_wait is not None else PoolSettings().max_wait_ms,
        )
        settings = ProcessorSettings(
            only_process_new=args.only_new,
            max_content_size=args.max_content_size if args.max_content_size is not None else ProcessorSettings().max_content_size,
            max_total_bytes=args.max_total_bytes if args.max_total_bytes is not None else ProcessorSettings().max_total_bytes,
        )
    except ConfigurationError as e:
        p.error(str(e))

    http_config = HttpConfig(
        user_agent=get_user_agent(args.user_agent),
        timeout=args.timeout if args.timeout is not None else HttpConfig().timeout,
        max_concurrency=args.concurrency if args.concurrency is not None else HttpConfig().max_concurrency,
    )

    if args.verbose:
        print(f"Archiving with configuration:")
        print(f"  Data dir: {args.data_dir}")
        print(f"  Tables: {params.url_table_name}, {params.content_table_name}")
        print(f"  Only new: {settings.only_process_new}")
        print(f"  Max content size: {settings.max_content_size}")
        print(f"  Pool: max_active={pool_settings.max_active} max_wait_ms={pool_settings.max_wait_ms}")
        print(f"  User Agent: {http_config.user_agent}")
        print()

    if args.show:
        for url in args.urls:
            info = asyncio.run(describe_url(url, data_dir=args.data_dir, params=params))
            if info is None:
                print(f"{url}: not stored")
                continue
            print(f"{url} -> {info['row_key']}")
            for column, value in sorted(info["columns"].items()):
                shown = value[:80].decode("utf-8", errors="replace")
                print(f"  {column}: {shown}{'...' if len(value) > 80 else ''}")
            if "content_key" in info:
                print(f"  content {info['content_key']}: {info['content_size']} bytes, "
                      f"referenced by {len(info['referrers'])} row(s)")
    else:
        asyncio.run(archive_urls(args.urls, data_dir=args.data_dir, http_config=http_config, params=params,
                                 pool_settings=pool_settings, settings=settings, quiet=args.quiet))
