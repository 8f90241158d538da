#!/usr/bin/env python3
"""
Offline bounce and analysis tool.

Usage:
    python tools/bounce.py <subcommand> [options]

Subcommands:
    mix <beat> [--vocal <file>] [--settings <json>]   Bounce beat + vocal through the effects chain
    analyze <beat> [--vocal <file>]                    Print tempo, downbeat, onset and alignment

Options:
    --format <str>        ogg, wav or flac (default: ogg)
    --seed <int>          Reverb impulse seed (default: random)
    --output <path>       Output file (default: <beat>_mix.<format>)
"""
import sys
import os
import json
import asyncio
import logging
import argparse
from pathlib import Path

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from studio.capture.backends import SyntheticCaptureBackend
from studio.config import StudioConfig
from studio.controller import EngineController
from studio.core.errors import StudioError


async def load_session(args, config: StudioConfig) -> EngineController:
    # No microphone in offline bounces
    controller = EngineController(config, capture_backend=SyntheticCaptureBackend())
    await controller.initialize()
    if args.beat:
        await controller.load_beat(Path(args.beat).read_bytes())
    if args.vocal:
        await controller.load_vocal(Path(args.vocal).read_bytes())
    return controller


def print_analysis(controller: EngineController):
    tempo = controller.beat_tempo
    downbeat = controller.beat_downbeat_offset
    onset = controller.vocal_onset
    print(f"Beat: {controller.beat_duration:.2f}s")
    print(f"Tempo: {f'{tempo:.1f} BPM' if tempo else 'n/a'}")
    print(f"Downbeat: {f'{downbeat:.3f}s' if downbeat is not None else 'n/a'}")
    if controller.vocal is not None:
        print(f"Vocal: {controller.vocal_duration:.2f}s, onset {onset:.3f}s")


def print_alignment(controller: EngineController):
    alignment = controller.last_alignment
    if alignment.is_aligned:
        print(f"Alignment: target {alignment.quantized_target:.3f}s, shift {alignment.alignment_shift:+.3f}s")
    else:
        print("Alignment: none")


async def cmd_mix(args):
    config = StudioConfig.from_env()
    config.export_format = args.format
    if args.seed is not None:
        config.reverb_seed = args.seed

    controller = await load_session(args, config)
    try:
        if args.settings:
            with open(args.settings, "r") as f:
                nested = json.load(f)
            controller.update_all_settings(nested)

        media = await controller.export_mix()
        output = Path(args.output) if args.output else Path(args.beat).with_name(f"{Path(args.beat).stem}_mix.{args.format}")
        output.write_bytes(media.data)

        print(f"\n=== Bounce Complete ===")
        print_analysis(controller)
        print_alignment(controller)
        print(f"Output: {output} ({media.duration:.2f}s, {media.mime_type})")
    finally:
        await controller.dispose()
    return 0


async def cmd_analyze(args):
    controller = await load_session(args, StudioConfig.from_env())
    try:
        print_analysis(controller)
        if controller.vocal is not None and controller.beat is not None:
            # Alignment is planned when playback starts
            await controller.start_playback()
            await controller.stop_playback()
            print_alignment(controller)
    finally:
        await controller.dispose()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Offline bounce and analysis for vocal sessions"
    )

    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    def add_common_args(p):
        p.add_argument("beat", help="Backing track (wav/flac/ogg)")
        p.add_argument("--vocal", type=str, help="Vocal take to align against the beat")

    p_mix = subparsers.add_parser("mix", help="Bounce beat + vocal to one file")
    add_common_args(p_mix)
    p_mix.add_argument("--settings", type=str, help="JSON file with effect settings per section")
    p_mix.add_argument("--format", choices=["ogg", "wav", "flac"], default="ogg")
    p_mix.add_argument("--seed", type=int, default=None, help="Reverb impulse seed (default: random)")
    p_mix.add_argument("--output", type=str, help="Output file")

    p_an = subparsers.add_parser("analyze", help="Print beat and vocal analysis")
    add_common_args(p_an)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.INFO)
    try:
        if args.command == "mix":
            return asyncio.run(cmd_mix(args))
        elif args.command == "analyze":
            return asyncio.run(cmd_analyze(args))
    except StudioError as e:
        print(f"Error: {e.message}")
        return 2
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
