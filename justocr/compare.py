"""
OCR Provider Comparison Tool

Runs one provider over a document and prints its text, or benchmarks up to
four providers on the same document and prints a comparison table with
statistics. Benchmark results can be exported as JSON or CSV.
"""

import asyncio
import os
import sys
from typing import Dict, List, Optional

from .benchmark import BenchmarkSession, compute_stats, export_csv, export_json, run_benchmark
from .config import Settings, configure_logging
from .credentials import CredentialMode, CredentialResolver, CredentialStore, MemoryCredentialStore, probe_system_credentials
from .document import ingest, normalize
from .exceptions import OCRError
from .registry import ProviderRegistry
from .runner import iter_provider_progress
from .transport import HttpMediatedTransport, InProcessMediatedTransport


async def _build_resolver(keys: Dict[str, str], server: Optional[HttpMediatedTransport]) -> CredentialResolver:
    store = MemoryCredentialStore(keys) if keys else CredentialStore()
    if server is not None:
        availability = await server.fetch_credentials()
    else:
        availability = await probe_system_credentials()
    modes = {provider_id: CredentialMode.USER_SUPPLIED for provider_id in keys}
    return CredentialResolver(store=store, availability=availability, modes=modes)


async def run_single(provider_id: str, pages, resolver: CredentialResolver):
    """Run one provider, printing progress, and return its result."""
    credentials = resolver.resolve(provider_id)
    result = None
    async for event in iter_provider_progress(provider_id, pages, credentials):
        print(f"  [{event.progress:>3}%] {event.message}")
        if event.result is not None:
            result = event.result
    return result


async def run_comparison(
    provider_ids: List[str],
    pages,
    resolver: CredentialResolver,
    server: Optional[HttpMediatedTransport] = None
) -> BenchmarkSession:
    """Benchmark providers, printing each one as it finishes."""
    session = BenchmarkSession.create(list(dict.fromkeys(provider_ids)))
    mediated = server or InProcessMediatedTransport()

    print(f"Testing {len(session)} providers on {len(pages)} page(s)")
    print("-" * 60)
    async for outcome in run_benchmark(provider_ids, pages, resolver, mediated, session=session):
        if outcome.result is not None:
            print(f"  {outcome.provider_id}: OK - {outcome.result.processing_time_ms}ms, "
                  f"{outcome.result.word_count} words")
        else:
            print(f"  {outcome.provider_id}: FAILED: {outcome.error_message}")
    return session


def print_comparison_table(session: BenchmarkSession):
    """Print a formatted comparison table."""
    print("\n" + "=" * 80)
    print("COMPARISON RESULTS")
    print("=" * 80)
    print(f"{'Provider':<24} {'Status':<10} {'Time(ms)':<10} {'Chars':<8} {'Words':<8} {'Pages':<6}")
    print("-" * 80)

    for outcome in session:
        result = outcome.result
        status = "OK" if result else "FAIL"
        time_ms = str(result.processing_time_ms) if result else "-"
        chars = str(result.char_count) if result else "-"
        words = str(result.word_count) if result else "-"
        pages = str(result.page_count) if result else "-"
        print(f"{outcome.provider_label:<24} {status:<10} {time_ms:<10} {chars:<8} {words:<8} {pages:<6}")
        if outcome.error_message:
            print(f"    {outcome.error_message}")

    print("-" * 80)

    stats = compute_stats(session)
    if stats.fastest:
        print(f"\nFastest: {stats.fastest.provider_name} ({stats.fastest.time_ms}ms)")
        print(f"Slowest: {stats.slowest.provider_name} ({stats.slowest.time_ms}ms)")
        print(f"Most text: {stats.most_characters.provider_name} ({stats.most_characters.char_count} chars)")
        print(f"Least text: {stats.least_characters.provider_name} ({stats.least_characters.char_count} chars)")
        print(f"Average: {stats.average_time_ms}ms, {stats.average_char_count} chars")
    print(f"Succeeded: {stats.success_count}, failed: {stats.error_count}")


def print_help():
    print("OCR Provider Comparison Tool")
    print("")
    print("Usage:")
    print("  python -m justocr.compare <file> [options]")
    print("")
    print("Options:")
    print("  --providers <list>    Comma-separated provider ids (default: tesseract-local)")
    print("  --key <id>=<key>      Use your own API key for a provider (repeatable)")
    print("  --server <url>        Run server-side providers through a JustOCR service")
    print("  --output-json <path>  Save benchmark results as JSON")
    print("  --output-csv <path>   Save benchmark results as CSV")
    print("  --list                List registered providers")
    print("  --serve               Start the JustOCR web service")
    print("")
    print("Examples:")
    print("  python -m justocr.compare scan.png --providers tesseract")
    print("  python -m justocr.compare report.pdf --providers tesseract-local,mistral,google")
    print("  python -m justocr.compare page.jpg --providers mistral --key mistral=sk-...")


def print_providers():
    print("Registered providers:")
    for provider_id in ProviderRegistry.list_all():
        info = ProviderRegistry.get_info(provider_id)
        byok = "BYOK" if info["acceptsUserCredentials"] else ""
        print(f"  {provider_id:<18} {info['name']:<22} ({info['type']:<5}) {byok:<5} {info['description']}")


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if not argv or argv[0] in ("-h", "--help"):
        print_help()
        return 0

    if argv[0] == "--list":
        print_providers()
        return 0

    if argv[0] == "--serve":
        from .server import run_server
        run_server(settings)
        return 0

    file_path = argv[0]
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}")
        return 1

    # Parse arguments
    provider_ids = ["tesseract-local"]
    keys: Dict[str, str] = {}
    server_url = None
    output_json = None
    output_csv = None

    i = 1
    while i < len(argv):
        option = argv[i]
        value = argv[i + 1] if i + 1 < len(argv) else None
        if value is None:
            print(f"Error: Missing value for {option}")
            return 1
        if option == "--providers":
            provider_ids = [p.strip() for p in value.split(",") if p.strip()]
        elif option == "--key":
            provider_id, _, key = value.partition("=")
            if not key:
                print("Error: --key expects <id>=<key>")
                return 1
            keys[provider_id.strip()] = key.strip()
        elif option == "--server":
            server_url = value
        elif option == "--output-json":
            output_json = value
        elif option == "--output-csv":
            output_csv = value
        else:
            print(f"Error: Unknown option: {option}")
            return 1
        i += 2

    with open(file_path, "rb") as f:
        data = f.read()

    try:
        document = ingest(data, filename=os.path.basename(file_path))
        pages = normalize(document)
    except OCRError as e:
        print(f"Error: {e}")
        return 1

    server = HttpMediatedTransport(server_url) if server_url else None

    async def run():
        resolver = await _build_resolver(keys, server)
        if len(provider_ids) == 1:
            return await run_single(provider_ids[0], pages, resolver)
        return await run_comparison(provider_ids, pages, resolver, server)

    try:
        outcome = asyncio.run(run())
    except OCRError as e:
        print(f"Error: {e}")
        return 1

    if not isinstance(outcome, BenchmarkSession):
        print("\n" + outcome.full_text)
        print(f"\n[{outcome.provider_label}: {outcome.processing_time_ms}ms, {outcome.char_count} chars]")
        return 0

    print_comparison_table(outcome)

    if output_json:
        with open(output_json, "w", encoding="utf-8") as f:
            f.write(export_json(outcome))
        print(f"\nResults saved to: {output_json}")
    if output_csv:
        with open(output_csv, "w", encoding="utf-8", newline="") as f:
            f.write(export_csv(outcome))
        print(f"Results saved to: {output_csv}")

    return 0


# CLI interface
if __name__ == "__main__":
    sys.exit(main())
