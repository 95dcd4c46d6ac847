#!/usr/bin/env python3
"""
smallpt - a distributed path tracer

Main entry point for rendering scenes and serving as a render agent.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from smallpt import run_agent
from smallpt.renderer import Renderer, RenderSettings, get_platform_info
from smallpt.scenes import SCENES, default_camera


def render(args: argparse.Namespace) -> int:
    """Render a scene locally, optionally helped by remote agents."""
    print("=" * 60)
    print("smallpt Path Tracer")
    print("=" * 60)

    info = get_platform_info()
    print(f"Platform: {info['system']} {info['machine']}")
    print(f"CPU Cores: {info['cpu_count']}")

    settings = RenderSettings(
        width=args.width,
        height=args.height,
        samples=args.samples,
        num_threads=args.threads,
        tile_size=args.tile_size,
        agents=args.agent,
        callback_host=args.callback_host,
        callback_port=args.callback_port,
        remote_timeout=args.remote_timeout
    )

    print(f"\nRender Settings:")
    print(f"  Resolution: {settings.width}x{settings.height}")
    print(f"  Samples: {settings.samples} ({settings.samples * 4} rays per pixel)")
    print(f"  Threads: {settings.num_threads}")
    if settings.agents:
        print(f"  Agents: {', '.join(settings.agents)}")

    print(f"\nCreating scene: {args.scene}")
    world = SCENES[args.scene]()
    print(f"  Spheres in scene: {len(world)}")

    renderer = Renderer(settings)

    last_progress = [0]

    def progress_callback(progress: float):
        pct = int(progress * 100)
        if pct > last_progress[0]:
            last_progress[0] = pct
            bar_len = 40
            filled = int(bar_len * progress)
            bar = '█' * filled + '░' * (bar_len - filled)
            print(f'\rRendering: [{bar}] {pct}%', end='', flush=True)

    renderer.set_progress_callback(progress_callback)

    print("\nRendering...")
    start_time = time.time()

    try:
        image = renderer.render(world, default_camera())
    except KeyboardInterrupt:
        renderer.cancel()
        print("\nRender cancelled")
        return 130

    elapsed = time.time() - start_time
    pixels = settings.width * settings.height
    print(f"\nRender completed in {elapsed:.2f} seconds")
    print(f"  Pixels per second: {pixels / elapsed:.0f}")

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    print(f"\nSaving to: {args.output}")
    renderer.save_image(image, args.output)

    print("\nDone!")
    return 0


def serve(args: argparse.Namespace) -> int:
    """Run as a remote render agent."""
    run_agent(args.host, args.port, args.threads)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='smallpt - a distributed path tracer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  python main.py --samples 16 --output render.png
  python main.py --agent http://render-box:4000/ --samples 64
  python main.py serve --port 4000
        '''
    )
    parser.add_argument('--threads', type=int, default=0, help='Number of threads (0=auto)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command')

    serve_parser = subparsers.add_parser('serve', help='Run as a render agent')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Host to bind to')
    serve_parser.add_argument('--port', type=int, default=4000, help='Port to listen on')
    serve_parser.add_argument('--threads', type=int, default=argparse.SUPPRESS,
                              help='Number of threads (0=auto)')
    serve_parser.set_defaults(func=serve)

    parser.add_argument('--width', type=int, default=1024, help='Image width (default: 1024)')
    parser.add_argument('--height', type=int, default=768, help='Image height (default: 768)')
    parser.add_argument('--samples', type=int, default=1,
                        help='Sample passes per pixel, 4 rays each (default: 1)')
    parser.add_argument('--tile-size', type=int, default=32, help='Tile edge in pixels (default: 32)')
    parser.add_argument('--agent', action='append', default=[], metavar='URL',
                        help='Remote agent to offload tiles to (repeatable)')
    parser.add_argument('--callback-host', default='localhost',
                        help='Host name agents use to reach this machine')
    parser.add_argument('--callback-port', type=int, default=4001,
                        help='Port for receiving agent results (default: 4001)')
    parser.add_argument('--remote-timeout', type=float, default=None,
                        help='Seconds to wait for remote tiles after local work finishes')
    parser.add_argument('--output', type=str, default='output/render.png', help='Output filename')
    parser.add_argument('--scene', type=str, default='cornell', choices=sorted(SCENES),
                        help='Scene to render (default: cornell)')
    parser.set_defaults(func=render)
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
