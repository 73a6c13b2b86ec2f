"""
bucketproxy: serve an object storage bucket as a browsable directory tree
"""

import argparse
import asyncio
import inspect
import logging
from pathlib import Path

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from bucketproxy.config import ENV_PREFIX, get_settings, validate_settings
from bucketproxy.connections import bucketproxy_connections
from bucketproxy.namespace.builder import load_namespace
from bucketproxy.namespace.resolve import walk
from bucketproxy.util import humanize_size


def run(args):
    settings = get_settings()
    logging.info(f"Starting server at port {args.port}, debug={not args.nodebug}, bucket={settings.bucket_name}")
    if warning := validate_settings():
        logging.warning(warning)
    logging.info(
        "To change server config, create an .env file and/or set environment parameters,\n"
        f"{' ' * 26}see bucketproxy/config.py or run `python -m bucketproxy config` for the current settings\n"
    )
    log_config = "logging.yml" if Path("logging.yml").exists() else LOGGING_CONFIG
    uvicorn.run("bucketproxy.api:app", host="0.0.0.0", reload=not args.nodebug, port=int(args.port), log_config=log_config)


def show_config(_args):
    settings = get_settings()
    print(f"Reading settings from {settings.env_file} and the environment")
    for fieldname, fieldinfo in type(settings).model_fields.items():
        if doc := fieldinfo.description:
            print(f"# {doc}")
        value = getattr(settings, fieldname)
        if isinstance(value, list):
            value = " ".join(value)
        if value is None:
            print(f"#{ENV_PREFIX}{fieldname}=\n")
        else:
            print(f"{ENV_PREFIX}{fieldname}={value}\n")


async def show_tree(args):
    async with bucketproxy_connections():
        namespace = await load_namespace()
    prefix = args.prefix
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    base_depth = prefix.count("/")
    for directory in walk(namespace, prefix):
        depth = directory.path.count("/") - base_depth
        if args.depth is not None and depth > args.depth:
            continue
        print(f"{'  ' * depth}/{directory.path:<40} {directory.count:>8} objects {humanize_size(directory.size):>10}")


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m bucketproxy")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("run", help="Run the proxy server")
    p.add_argument(
        "--no-debug",
        action="store_true",
        dest="nodebug",
        help="Disable debug mode (auto reload)",
    )
    p.add_argument("-p", "--port", help="Port", default=8080)
    p.set_defaults(func=run)

    p = subparsers.add_parser("config", help="Show the current settings in .env format")
    p.set_defaults(func=show_config)

    p = subparsers.add_parser("tree", help="List the bucket once and print the directory tree with sizes")
    p.add_argument("prefix", nargs="?", default="", help="Only show this directory and below")
    p.add_argument("-d", "--depth", type=int, help="Maximum depth to show")
    p.set_defaults(func=show_tree)

    args = parser.parse_args()

    level = logging.DEBUG if get_settings().debug else logging.INFO
    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=level)
    for name in ["botocore", "aiobotocore"]:
        logging.getLogger(name).setLevel(logging.WARNING)

    if inspect.iscoroutinefunction(args.func):
        asyncio.run(args.func(args))
    else:
        args.func(args)


if __name__ == "__main__":
    main()
