#!/usr/bin/env python3
"""
Flicker command-line client
===========================
Uploads an image with a prompt to a running gateway and polls until the
generated image or video is ready, printing progress along the way.

    python scripts/generate.py photo.png "make it a watercolor painting"
    python scripts/generate.py photo.jpg "slow pan to the left" --kind video
"""

import argparse
import asyncio
import mimetypes
import sys
import time
from pathlib import Path

import aiohttp

from flicker import config
from flicker.client.poller import PollingController, PollState, ProxyAPI


def print_progress(controller: PollingController) -> None:
    if controller.state is PollState.UPLOADING:
        print("📤 Uploading image and starting job...")
    elif controller.state is PollState.POLLING:
        if controller.status is None:
            print(f"🔄 Job started: {controller.task_id}")
        else:
            print(f"   Status: {controller.status} ({controller.progress:.0f}%)")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Generate an image or video through the Flicker gateway")
    parser.add_argument("image", type=Path, help="Source image (JPEG, PNG or WebP)")
    parser.add_argument("prompt", help="What to generate")
    parser.add_argument("--url", default="http://localhost:8000", help="Gateway base URL")
    parser.add_argument("--ratio", default="1280:720", choices=["1280:720", "720:1280"])
    parser.add_argument("--kind", default="image", choices=["image", "video"])
    parser.add_argument("--interval", type=float, default=config.POLL_INTERVAL, help="Seconds between status checks")
    args = parser.parse_args()

    if not args.image.is_file():
        print(f"❌ No such file: {args.image}")
        return 1

    content_type = mimetypes.guess_type(args.image.name)[0] or "application/octet-stream"

    print("=" * 60)
    print(f"🎬 FLICKER {args.kind.upper()} GENERATION")
    print("=" * 60)
    print(f"📍 Gateway: {args.url}")
    print(f"🖼️  Source: {args.image} ({content_type})")
    print(f"📝 Prompt: {args.prompt}")
    print()

    start_time = time.time()
    async with aiohttp.ClientSession() as session:
        controller = PollingController(ProxyAPI(session, args.url), args.interval, on_change=print_progress)
        try:
            started = await controller.start(
                args.image.read_bytes(),
                args.prompt,
                ratio=args.ratio,
                kind=args.kind,
                filename=args.image.name,
                content_type=content_type,
            )
            if started:
                await controller.wait()
        finally:
            controller.close()

    print()
    if controller.state is PollState.SUCCEEDED:
        print(f"✅ Done in {time.time() - start_time:.1f}s")
        print(f"   {controller.result_url}")
        return 0
    print(f"❌ Error: {controller.error}")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
