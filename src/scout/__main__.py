"""CLI entry point for Scout."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import uvicorn

from .config import _get_config_path, load_config


def _print_setup_guide(config_path: Path) -> None:
    print(
        f"\nTo get started, create {config_path} with:\n\n"
        "ai:\n"
        '  base_url: "https://your-ai-endpoint/v1"\n'
        '  api_key: "your-api-key"\n'
        '  model: "gpt-4o-mini"\n'
        "search:\n"
        '  api_key: "your-serper-key"\n'
        "auth:\n"
        "  users:\n"
        '    - id: "alice"\n'
        '      token_sha256: "<sha256 of alice\'s bearer token>"\n'
        "\nOr set environment variables:\n"
        "  AI_CHAT_BASE_URL=https://your-ai-endpoint/v1\n"
        "  AI_CHAT_API_KEY=your-api-key\n"
        "  SERPER_API_KEY=your-serper-key\n"
        "  SCOUT_API_TOKEN=your-bearer-token\n",
        file=sys.stderr,
    )


def _load_config_or_exit():
    config_path = _get_config_path()
    try:
        config = load_config(config_path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        _print_setup_guide(config_path)
        sys.exit(1)
    return config_path, config


async def _test_connection(config) -> None:
    from .services.ai_service import AIService

    ai_service = AIService(config.ai)

    print("Config:")
    print(f"  Endpoint: {config.ai.base_url}")
    print(f"  Model:    {config.ai.model}")
    print(f"  SSL:      {'enabled' if config.ai.verify_ssl else 'disabled'}")

    print("\nListing models...")
    valid, message, models = await ai_service.validate_connection()
    await ai_service.close()
    if not valid:
        print(f"   FAILED - {message}")
        sys.exit(1)
    print(f"   OK - {len(models)} model(s) available")
    for m in models[:10]:
        print(f"     - {m}")
    print("\nAll checks passed.")


def _run_server(config, config_path: Path) -> None:
    print(f"Config loaded from {config_path}" if config_path.exists() else "Config loaded from environment")
    print(f"  AI endpoint: {config.ai.base_url}")
    print(f"  Model: {config.ai.model}")
    print(f"  Data dir: {config.app.data_dir}")
    print(f"  Web search: {'enabled' if config.search.api_key else 'disabled (no search api_key)'}")
    print(f"  Tracing: {'enabled' if config.tracing.enabled else 'disabled'}")

    from .app import create_app

    app = create_app(config)

    if config.app.host in ("0.0.0.0", "::"):
        print("  WARNING: Binding to all interfaces. The app is accessible from the network.", file=sys.stderr)

    uvicorn.run(app, host=config.app.host, port=config.app.port, log_level=config.app.log_level)


def main() -> None:
    parser = argparse.ArgumentParser(prog="scout", description="Scout - web-search chat with resumable streams")
    parser.add_argument("--test", action="store_true", help="Test connection settings and exit")
    args = parser.parse_args()

    config_path, config = _load_config_or_exit()

    if args.test:
        asyncio.run(_test_connection(config))
        return

    _run_server(config, config_path)


if __name__ == "__main__":
    main()
