import argparse
import asyncio
import base64
import json
import logging
import os
import sys
from typing import Optional

from config.config_manager import ConfigManager
from core.image_service import ImageService
from network.command_dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)


def setup_logging(log_level, log_dir: Optional[str] = None):
    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)
    log_dir = os.path.expanduser(log_dir or "~/.imagelens")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "imagelens.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stderr)
        ]
    )


class Application:
    """Owns the configuration, the image service and the command dispatcher."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or ConfigManager()
        self.service = ImageService.from_config(self.config_manager)
        self.dispatcher = CommandDispatcher(self.service)
        self._closed = False

    async def handle(self, request: dict) -> dict:
        return json.loads(await self.dispatcher.handle_request(request))

    def close(self):
        # why: the metadata cache must be flushed exactly once
        if self._closed:
            return
        self._closed = True
        self.service.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imagelens", description="Image metadata, rating and thumbnail tool.")
    parser.add_argument('--config', default=None, help='Path to config.yaml (default: $XDG_CONFIG_HOME/imagelens).')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('read', help='Print metadata for one or more images as JSON.')
    p.add_argument('paths', nargs='+')

    p = sub.add_parser('thumbnail', help='Generate (or fetch the cached) thumbnail of an image.')
    p.add_argument('path')
    p.add_argument('-o', '--output', required=True, help='File to write the thumbnail to.')
    p.add_argument('--size', type=int, default=None)
    p.add_argument('--quality', type=int, default=None)
    p.add_argument('--format', default=None, choices=['webp', 'jpeg', 'png'])

    p = sub.add_parser('rate', help='Write a 0-5 star rating into an image.')
    p.add_argument('path')
    p.add_argument('rating', type=int, choices=range(0, 6))

    sub.add_parser('clear-cache', help='Delete every cached thumbnail.')
    return parser


def request_for(args) -> dict:
    if args.command == 'read':
        if len(args.paths) == 1:
            return {"command": "read_metadata", "path": args.paths[0]}
        return {"command": "read_metadata_batch", "paths": args.paths}
    if args.command == 'thumbnail':
        return {"command": "generate_thumbnail", "path": args.path,
                "size": args.size, "quality": args.quality, "format": args.format}
    if args.command == 'rate':
        return {"command": "write_rating", "path": args.path, "rating": args.rating}
    return {"command": "clear_thumbnail_cache"}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config_manager = ConfigManager(args.config)
    logging_level = config_manager.logging_level
    setup_logging(logging_level, config_manager.cache_dir)
    logger.debug(f"Logging level set to: {logging_level.upper()}")

    with Application(config_manager) as app:
        response = asyncio.run(app.handle(request_for(args)))

    if response.get("status") == "error":
        print(response.get("message"), file=sys.stderr)
        return 1

    if args.command == 'thumbnail':
        thumb = response["thumbnail"]
        with open(args.output, "wb") as f:
            f.write(base64.b64decode(thumb["data"]))
        print(f"{args.output}: {thumb['width']}x{thumb['height']} {thumb['mime_type']}")
    elif args.command == 'read':
        print(json.dumps({k: response[k] for k in ("metadata", "errors") if response.get(k)}, indent=2))
    elif args.command == 'clear-cache':
        print(f"Removed {response.get('removed', 0)} cached files")
    else:
        print(response.get("message") or json.dumps(response))
    return 0


if __name__ == "__main__":
    sys.exit(main())
