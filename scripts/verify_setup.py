#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration and collaborator reachability before taking calls.
Run this after setting up your .env file.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent

# Load environment variables before the settings module reads them
from dotenv import load_dotenv
load_dotenv(project_root / ".env")


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask(value: str) -> str:
    """Hide most of a secret."""
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_env_file() -> bool:
    """Check if .env file exists."""
    exists = (project_root / ".env").exists()
    print_result(".env file", exists, "Found" if exists else "Not found (using process environment only)")
    return exists


def check_settings() -> bool:
    """Load settings and report the values that change behavior."""
    from voice_agent.config import get_settings

    try:
        settings = get_settings()
    except Exception as e:
        print_result("Settings", False, str(e)[:80])
        return False

    print_result("APP_ENV", True, settings.app_env)
    print_result("BUSINESS_TIMEZONE", True, settings.business_timezone)
    print_result("CALENDAR_AGENT_URL", True, settings.calendar_agent_url)
    print_result("KNOWLEDGE_SERVICE_URL", True, settings.knowledge_service_url)

    key = settings.anthropic_api_key or ""
    print_result(
        "ANTHROPIC_API_KEY",
        bool(key),
        f"Set ({mask(key)})" if key else "Not set - extractors use deterministic fallbacks",
    )
    email_key = settings.email_api_key or ""
    print_result(
        "EMAIL_API_KEY",
        bool(email_key),
        f"Set ({mask(email_key)})" if email_key else "Not set - summary emails disabled",
    )
    return True


def check_tenants() -> bool:
    """Validate the tenant profile file, if one is configured."""
    from voice_agent.core.tenants import TenantRegistry
    from voice_agent.config import get_settings

    path = get_settings().tenant_config_path
    if not path:
        print_result("Tenant profiles", True, "Built-in default profile")
        return True

    try:
        registry = TenantRegistry.from_file(path)
        print_result("Tenant profiles", True, f"Loaded from {path}")
        return registry is not None
    except (OSError, ValueError) as e:
        print_result("Tenant profiles", False, f"{path}: {str(e)[:60]}")
        return False


async def check_redis() -> bool:
    """Verify Redis connection (non-critical: rate limiting fails open)."""
    from voice_agent.infra.redis import RedisClient, check_redis_health

    healthy = await check_redis_health()
    print_result("Redis", healthy, "Connection successful" if healthy else "Unavailable (rate limiting disabled)")
    await RedisClient.close()
    return healthy


async def check_calendar_agent() -> bool:
    """Check if Calendar Agent is reachable."""
    from voice_agent.core.scheduling.calendar_client import CalendarAgentClient

    client = CalendarAgentClient()
    try:
        reachable = await client.health_check()
    finally:
        await client.close()
    print_result("Calendar Agent", reachable, f"{'Reachable' if reachable else 'Not reachable'} at {client.base_url}")
    return reachable


async def check_knowledge_service() -> bool:
    """Check if the knowledge search service is reachable."""
    from voice_agent.core.agent.knowledge import KnowledgeSearchClient

    client = KnowledgeSearchClient()
    try:
        reachable = await client.health_check()
    finally:
        await client.close()
    print_result("Knowledge service", reachable, f"{'Reachable' if reachable else 'Not reachable'} at {client.base_url}")
    return reachable


async def check_anthropic() -> bool:
    """Verify the Anthropic API key with a minimal call."""
    from voice_agent.infra.claude import ClaudeClient, ClaudeClientError

    if not os.getenv("ANTHROPIC_API_KEY"):
        print_result("Anthropic API", False, "Skipped - ANTHROPIC_API_KEY not set")
        return False

    client = ClaudeClient()
    try:
        await client.generate("Hi", max_tokens=5, use_fallback_on_error=False)
        print_result("Anthropic API", True, "Key validated successfully")
        return True
    except ClaudeClientError as e:
        print_result("Anthropic API", False, str(e)[:60])
        return False
    finally:
        await client.close()


async def main() -> int:
    """Run all verification checks."""
    sys.path.insert(0, str(project_root))

    print("\n" + "="*60)
    print(" Voice Agent - Setup Verification")
    print("="*60)

    print_header("Configuration")
    check_env_file()
    if not check_settings():
        return 1
    tenants_ok = check_tenants()

    print_header("Collaborators")
    calendar_ok = await check_calendar_agent()
    await check_knowledge_service()
    await check_redis()
    await check_anthropic()

    print_header("Summary")
    if not (tenants_ok and calendar_ok):
        print("\n  \033[91mCRITICAL: bookings will fail until the issues above are fixed.\033[0m\n")
        return 1

    print("\n  \033[92mReady to take calls.\033[0m")
    print("  Start the API with:")
    print("    uvicorn voice_agent.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
