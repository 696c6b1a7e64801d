#!/usr/bin/env python3
"""
PE dump CLI tool.

Parses a PE image and prints its minimal projection as JSON, msgpack or a
human-readable summary, optionally followed by structural verification.

Usage:
    python -m pemap.tools.dump_pe <binary> [--format json|msgpack|text]
        [--output PATH] [--exclude imports|exports|relocs|resources]
        [--verify] [--verbose]
"""

import argparse
import logging
import sys
from pathlib import Path

from pemap import (
    ImageVerifier,
    MinimalImage,
    ParseError,
    ParseOptions,
    PeImage,
    parse_file,
)
from pemap.pe import lookup_name, section_flag_names
from pemap.pe.types import MACHINE_NAMES


def format_text(image: PeImage) -> str:
    """Render a short human-readable summary of an image."""
    header = image.file_header
    optional = image.optional_header
    lines = [
        f"Format:      {optional.NAME}",
        f"Machine:     {lookup_name(header.Machine.value, MACHINE_NAMES)}",
        f"Timestamp:   {header.timestamp.isoformat()}",
        f"Image base:  0x{image.image_base:x}",
        f"Entry point: 0x{image.entry_point:x}",
        "",
        f"Sections ({len(image.sections)}):",
    ]
    for s in image.sections:
        flags = ",".join(section_flag_names(s.Characteristics.value))
        lines.append(
            f"  {s.name_str:<8} rva=0x{s.VirtualAddress.value:08x} "
            f"vsize=0x{s.VirtualSize.value:08x} "
            f"raw=0x{s.PointerToRawData.value:08x}+0x{s.SizeOfRawData.value:x} "
            f"{flags}"
        )

    if image.imports is not None:
        lines.append("")
        lines.append(f"Imports ({len(image.imports)} modules):")
        for descriptor in image.imports:
            dll = descriptor.dll_name.value if descriptor.dll_name else "<unreadable>"
            lines.append(f"  {dll} ({len(descriptor.functions)} functions)")

    if image.exports is not None:
        name = image.exports.dll_name.value if image.exports.dll_name else "<unnamed>"
        lines.append("")
        lines.append(f"Exports from {name} ({len(image.exports.exports)}):")
        for export in image.exports.exports:
            label = export.name.value if export.name else "<ordinal only>"
            target = (
                f"-> {export.forwarder.value}"
                if export.forwarder
                else f"0x{export.address.value:x}"
            )
            lines.append(f"  {export.ordinal:>5} {label} {target}")

    if image.relocations is not None:
        count = sum(len(block.entries) for block in image.relocations)
        lines.append("")
        lines.append(
            f"Relocations: {len(image.relocations)} blocks, {count} entries"
        )

    if image.resources is not None:
        leaves = list(image.resources.iter_leaves())
        lines.append("")
        lines.append(f"Resources: {len(leaves)} data entries")

    errors = list(image.iter_errors())
    if errors:
        lines.append("")
        lines.append(f"Recovered errors ({len(errors)}):")
        for where, exc in errors:
            lines.append(f"  {where}: {exc}")

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Parse a PE binary and dump its structure"
    )
    parser.add_argument("binary", type=Path, help="Path to PE binary to parse")
    parser.add_argument(
        "--format",
        "-f",
        choices=["json", "msgpack", "text"],
        default="json",
        help="Output format (default: json)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="Write output to a file instead of stdout",
    )
    parser.add_argument(
        "--exclude",
        "-x",
        action="append",
        default=[],
        choices=["imports", "exports", "relocs", "resources"],
        help="Skip parsing a directory (repeatable)",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Run structural verification after parsing",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.binary.exists():
        print(f"Error: {args.binary} does not exist", file=sys.stderr)
        sys.exit(1)

    options = ParseOptions().excluding(*args.exclude)
    try:
        image = parse_file(args.binary, options)
    except ParseError as exc:
        print(f"Error: {args.binary}: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.format == "text":
        output: str | bytes = format_text(image) + "\n"
    elif args.format == "msgpack":
        output = MinimalImage.from_image(image).to_msgpack()
    else:
        output = MinimalImage.from_image(image).to_json() + "\n"

    if args.output is not None:
        if isinstance(output, bytes):
            args.output.write_bytes(output)
        else:
            args.output.write_text(output)
    elif isinstance(output, bytes):
        sys.stdout.buffer.write(output)
    else:
        sys.stdout.write(output)

    if args.verify:
        result = ImageVerifier(image).run_all_checks()
        print(result, file=sys.stderr)
        sys.exit(0 if result.passed else 1)


if __name__ == "__main__":
    main()
