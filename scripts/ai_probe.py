from __future__ import annotations

import argparse
import base64
import sys
from pathlib import Path

from mindlog.ai_client import create_ai_client
from mindlog.config import get_settings
from mindlog.errors import AIError
from mindlog.logging_utils import init_logger


def main() -> None:
    parser = argparse.ArgumentParser(description="Check that the configured AI provider answers text and image requests")
    parser.add_argument("--image", type=str, default="", help="Optional capture to send through analyze_image")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("ai_probe", settings.logging.directory, settings.logging.level)
    client = create_ai_client(settings.ai, logger)

    print(f"== text only ({client.provider_name}) ==")
    try:
        print(client.send_text('ping: 只返回 JSON {"ok": true}')[:1200])
    except AIError as exc:
        print(f"FAILED ({type(exc).__name__}): {exc}")
        sys.exit(1)

    if args.image:
        print("\n== with image ==")
        encoded = base64.b64encode(Path(args.image).read_bytes()).decode("ascii")
        try:
            print(client.analyze_image(encoded, "用一句话描述这张截图的内容")[:1200])
        except AIError as exc:
            print(f"FAILED ({type(exc).__name__}): {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
