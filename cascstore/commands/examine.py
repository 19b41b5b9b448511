"""Examine commands for local store inspection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from cascstore.core.config import AppConfig
from cascstore.core.content import ContentStore
from cascstore.core.errors import CascError
from cascstore.core.index import LocalIndex
from cascstore.core.local_storage import CascStore
from cascstore.core.shmem import SharedMemoryLayout
from cascstore.core.utils import compute_md5, format_size, hexlify, unhexlify, validate_hash_string
from cascstore.formats import (
    BLTEParser,
    ContentManifestParser,
    EncodingParser,
    Guid,
    decode_blte,
)

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def _output_json(data: dict[str, Any], console: Console) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _output_table(table: Table, console: Console) -> None:
    """Output table using Rich formatting."""
    console.print(table)


def _read_input(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise click.ClickException(f"Failed to read file {path}: {e}") from e


def _parse_key(key: str, what: str = "key") -> bytes:
    if not validate_hash_string(key):
        raise click.ClickException(f"Invalid {what}: not a hex string: {key}")
    return unhexlify(key)


def _fail(what: str, error: Exception) -> click.ClickException:
    logger.error(f"Failed to {what}", error=str(error), error_type=type(error).__name__)
    return click.ClickException(f"Failed to {what}: {type(error).__name__}: {error}")


@click.group()
def examine() -> None:
    """Examine local CASC storage files."""
    pass


@examine.command()
@click.argument("input_path", type=click.Path(path_type=Path))
@click.pass_context
def shmem(ctx: click.Context, input_path: Path) -> None:
    """Examine a shmem descriptor file."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        layout = SharedMemoryLayout.from_bytes(_read_input(input_path))
    except CascError as e:
        raise _fail("examine shmem file", e) from e

    if config.output_format == "json":
        _output_json({
            "data_path": layout.data_path,
            "versions": list(layout.versions),
            "active_buckets": [bucket for bucket, _ in layout.active_buckets()],
            "free_spaces": [
                {"file": entry.file, "offset": entry.offset, "length": entry.length}
                for entry in layout.free_spaces
            ],
        }, console)
        return

    table = Table(title="Shared Memory")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Data Path", layout.data_path or "(empty)")
    table.add_row("Active Buckets", str(len(layout.active_buckets())))
    table.add_row("Free Space Entries", str(len(layout.free_spaces)))
    _output_table(table, console)

    buckets = Table(title="Bucket Versions")
    buckets.add_column("Bucket", style="cyan")
    buckets.add_column("Version", style="green")
    for bucket, version in enumerate(layout.versions):
        if version or verbose:
            buckets.add_row(f"{bucket:02x}", str(version))
    _output_table(buckets, console)


@examine.command()
@click.argument("input_path", type=click.Path(path_type=Path))
@click.option("--limit", "-l", type=int, default=10, help="Limit number of entries to display")
@click.pass_context
def index(ctx: click.Context, input_path: Path, limit: int) -> None:
    """Examine a bucket index (.idx) file."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        local_index = LocalIndex.from_bytes(_read_input(input_path))
    except CascError as e:
        raise _fail("examine index file", e) from e

    header = local_index.header
    entries = local_index.records[:limit]

    if config.output_format == "json":
        _output_json({
            "version": header.version,
            "bucket": header.bucket,
            "length_size": header.length_size,
            "location_size": header.location_size,
            "key_size": header.key_size,
            "segment_bits": header.segment_bits,
            "limit": header.limit,
            "entry_count": len(local_index.records),
            "entries": [
                {"key": hexlify(e.key), "file": e.file, "offset": e.offset, "length": e.length}
                for e in entries
            ],
        }, console)
        return

    table = Table(title="Index Header")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Version", str(header.version))
    table.add_row("Bucket", f"{header.bucket:02x}")
    table.add_row("Field Sizes", f"key={header.key_size} location={header.location_size} length={header.length_size}")
    table.add_row("Segment Bits", str(header.segment_bits))
    table.add_row("Limit", format_size(header.limit))
    table.add_row("Entries", str(len(local_index.records)))
    _output_table(table, console)

    if entries:
        entry_table = Table(title=f"Entries ({len(entries)} shown)")
        entry_table.add_column("Key", style="yellow")
        entry_table.add_column("File", style="blue")
        entry_table.add_column("Offset", style="green")
        entry_table.add_column("Length", style="magenta")
        for entry in entries:
            entry_table.add_row(hexlify(entry.key), f"data.{entry.file:03d}", f"{entry.offset:#x}", str(entry.length))
        _output_table(entry_table, console)


@examine.command()
@click.argument("input_path", type=click.Path(path_type=Path))
@click.option(
    "--output-file", "-o",
    type=click.Path(path_type=Path),
    help="Save decoded data to file"
)
@click.pass_context
def blte(ctx: click.Context, input_path: Path, output_file: Path | None) -> None:
    """Examine and decode a BLTE file."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        parser = BLTEParser(max_workers=config.blte_workers)
        blte_file = parser.parse(_read_input(input_path))
        decoded = parser.decode(blte_file)
    except CascError as e:
        raise _fail("examine BLTE file", e) from e

    if output_file:
        output_file.write_bytes(decoded)

    if config.output_format == "json":
        _output_json({
            "header_size": blte_file.header.header_size,
            "flags": blte_file.header.flags,
            "chunk_count": len(blte_file.chunks),
            "encoded_size": sum(chunk.encoded_size for chunk in blte_file.chunks),
            "decoded_size": len(decoded),
            "decoded_md5": compute_md5(decoded).hex(),
            "chunks": [
                {
                    "index": chunk.index,
                    "encoded_size": chunk.encoded_size,
                    "content_size": chunk.content_size,
                    "mode": chunk.mode,
                    "checksum": chunk.checksum.hex(),
                }
                for chunk in blte_file.chunks
            ],
        }, console)
        return

    table = Table(title="BLTE File Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Header Size", str(blte_file.header.header_size))
    if blte_file.header.flags is not None:
        table.add_row("Flags", f"0x{blte_file.header.flags:02x}")
    table.add_row("Chunk Count", str(len(blte_file.chunks)))
    table.add_row("Encoded", format_size(sum(chunk.encoded_size for chunk in blte_file.chunks)))
    table.add_row("Decoded", format_size(len(decoded)))
    table.add_row("MD5", compute_md5(decoded).hex())
    _output_table(table, console)

    if verbose:
        chunk_table = Table(title="Chunk Details")
        chunk_table.add_column("Index", style="cyan")
        chunk_table.add_column("Encoded", style="yellow")
        chunk_table.add_column("Content", style="green")
        chunk_table.add_column("Mode", style="blue")
        chunk_table.add_column("Checksum", style="magenta")
        for chunk in blte_file.chunks:
            chunk_table.add_row(
                str(chunk.index),
                format_size(chunk.encoded_size),
                format_size(chunk.content_size) if chunk.content_size is not None else "-",
                chunk.mode,
                chunk.checksum.hex() or "-",
            )
        _output_table(chunk_table, console)

    if output_file:
        console.print(f"[green]Decoded data saved to {output_file}[/green]")


@examine.command()
@click.argument("input_path", type=click.Path(path_type=Path))
@click.option("--blte", "is_blte_input", is_flag=True, help="Input is BLTE-encoded")
@click.option("--lookup", "-k", type=str, help="Content key to resolve (hex string)")
@click.option("--limit", "-l", type=int, default=10, help="Limit number of entries to display")
@click.pass_context
def encoding(
    ctx: click.Context,
    input_path: Path,
    is_blte_input: bool,
    lookup: str | None,
    limit: int,
) -> None:
    """Examine an encoding table."""
    config, console, verbose, debug = _get_context_objects(ctx)

    content_key = _parse_key(lookup, "content key") if lookup else None
    try:
        data = _read_input(input_path)
        if is_blte_input:
            data = decode_blte(data, max_workers=config.blte_workers)
        table = EncodingParser().parse(data)

        resolved = None
        if content_key is not None:
            resolved = {
                "content_key": hexlify(content_key),
                "encoding_keys": [hexlify(k) for k in table.encoding_keys(content_key)],
                "content_size": table.content_size(content_key),
            }
    except CascError as e:
        raise _fail("examine encoding file", e) from e

    header = table.header
    samples = [entry for _, entry in zip(range(limit), table)]

    if config.output_format == "json":
        result: dict[str, Any] = {
            "version": header.version,
            "ckey_size": header.ckey_size,
            "ekey_size": header.ekey_size,
            "ckey_page_count": header.ckey_page_count,
            "ekey_page_count": header.ekey_page_count,
            "content_keys": len(table),
            "encoding_keys": table.ekey_count,
            "especs": table.especs,
        }
        if resolved is not None:
            result["lookup"] = resolved
        else:
            result["sample_entries"] = [
                {
                    "content_key": hexlify(entry.content_key),
                    "encoding_keys": [hexlify(k) for k in entry.encoding_keys],
                    "content_size": entry.content_size,
                }
                for entry in samples
            ]
        _output_json(result, console)
        return

    header_table = Table(title="Encoding Table Header")
    header_table.add_column("Property", style="cyan")
    header_table.add_column("Value", style="white")
    header_table.add_row("Version", str(header.version))
    header_table.add_row("CKey Size", f"{header.ckey_size} bytes")
    header_table.add_row("EKey Size", f"{header.ekey_size} bytes")
    header_table.add_row("CKey Pages", f"{header.ckey_page_count} x {header.ckey_page_size_kb} KB")
    header_table.add_row("EKey Pages", f"{header.ekey_page_count} x {header.ekey_page_size_kb} KB")
    header_table.add_row("Content Keys", str(len(table)))
    header_table.add_row("Encoding Keys", str(table.ekey_count))
    header_table.add_row("ESpecs", str(len(table.especs)))
    _output_table(header_table, console)

    if resolved is not None:
        console.print(f"[green]{resolved['content_key']} -> {resolved['encoding_keys'][0]}[/green]")
        return

    if samples:
        entries_table = Table(title=f"Content Key Entries ({len(samples)} shown)")
        entries_table.add_column("Content Key", style="yellow")
        entries_table.add_column("Encoding Keys", style="green")
        entries_table.add_column("File Size", style="blue")
        for entry in samples:
            entries_table.add_row(
                hexlify(entry.content_key),
                "\n".join(hexlify(k) for k in entry.encoding_keys),
                format_size(entry.content_size),
            )
        _output_table(entries_table, console)


@examine.command()
@click.argument("storage_path", type=click.Path(path_type=Path))
@click.argument("key", type=str)
@click.option(
    "--encoding", "-e", "encoding_key",
    type=str,
    help="Encoding key of the encoding table; KEY is then a content key"
)
@click.option(
    "--output-file", "-o",
    type=click.Path(path_type=Path),
    help="Save retrieved data to file"
)
@click.pass_context
def get(
    ctx: click.Context,
    storage_path: Path,
    key: str,
    encoding_key: str | None,
    output_file: Path | None,
) -> None:
    """Read a key from a local store.

    KEY is an encoding key unless --encoding is given, in which case it is
    a content key resolved through the encoding table first.
    """
    config, console, verbose, debug = _get_context_objects(ctx)

    requested = _parse_key(key)
    try:
        if encoding_key:
            content = ContentStore.open(storage_path, _parse_key(encoding_key, "encoding key"), config)
            ekey = content.resolve(requested)
            store = content.store
        else:
            store = CascStore.open(storage_path, config)
            ekey = requested
        header = store.read_record_header(ekey)
        data = store.get(ekey)
    except (CascError, OSError) as e:
        raise _fail("read key", e) from e

    if output_file:
        output_file.write_bytes(data)

    if config.output_format == "json":
        _output_json({
            "key": key,
            "encoding_key": hexlify(ekey),
            "record_size": header.size,
            "flags": header.flags,
            "size": len(data),
            "md5": compute_md5(data).hex(),
        }, console)
        return

    table = Table(title="Retrieved Content")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Key", key)
    table.add_row("Encoding Key", hexlify(ekey))
    table.add_row("Record Size", format_size(header.size))
    table.add_row("Size", format_size(len(data)))
    table.add_row("MD5", compute_md5(data).hex())
    _output_table(table, console)

    if output_file:
        console.print(f"[green]Data saved to {output_file}[/green]")


@examine.command()
@click.argument("input_path", type=click.Path(path_type=Path))
@click.option("--name", "-n", "file_name", required=True, help="Logical manifest file name")
@click.option("--limit", "-l", type=int, default=10, help="Limit number of assets to display")
@click.pass_context
def manifest(ctx: click.Context, input_path: Path, file_name: str, limit: int) -> None:
    """Decrypt and examine a content manifest."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        cmf = ContentManifestParser(file_name).parse(_read_input(input_path))
    except CascError as e:
        raise _fail("examine manifest", e) from e

    assets = cmf.assets[:limit]

    if config.output_format == "json":
        _output_json({
            "build_version": cmf.header.build_version,
            "entry_count": cmf.header.entry_count,
            "asset_count": cmf.header.asset_count,
            "assets": [
                {
                    "guid": f"{asset.guid:016X}",
                    "type": Guid.from_raw(asset.guid).type,
                    "size": asset.size,
                    "md5": asset.md5.hex(),
                }
                for asset in assets
            ],
        }, console)
        return

    table = Table(title="Content Manifest")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Build Version", str(cmf.header.build_version))
    table.add_row("Entries", str(cmf.header.entry_count))
    table.add_row("Assets", str(cmf.header.asset_count))
    _output_table(table, console)

    if assets:
        asset_table = Table(title=f"Assets ({len(assets)} shown)")
        asset_table.add_column("GUID", style="yellow")
        asset_table.add_column("Type", style="blue")
        asset_table.add_column("Size", style="green")
        asset_table.add_column("MD5", style="magenta")
        for asset in assets:
            asset_table.add_row(
                f"{asset.guid:016X}",
                f"{Guid.from_raw(asset.guid).type:03X}",
                format_size(asset.size),
                asset.md5.hex(),
            )
        _output_table(asset_table, console)
