"""OAuth1 MCP Server implementation using FastMCP."""

import asyncio
import contextlib
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from mcp.server.fastmcp import FastMCP

from .config import Settings, get_settings
from .driver import OAuth1Driver
from .exceptions import (
    ConfigurationError,
    MismatchError,
    TransportError,
)
from .log import configure_logging, logger
from .models import AuthState

# Module-level holders for lifespan management
_driver: OAuth1Driver | None = None
_settings: Settings | None = None
_tick_lock: asyncio.Lock | None = None

T = TypeVar("T")


async def _serialized(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking driver step in a worker thread.

    Ticks and resets are serialized so the host loop and tool calls never
    overlap.
    """
    global _tick_lock
    if _tick_lock is None:
        _tick_lock = asyncio.Lock()
    async with _tick_lock:
        return await asyncio.to_thread(func, *args)


async def _tick(driver: OAuth1Driver) -> AuthState:
    """Run one driver tick in a worker thread."""
    return await _serialized(driver.tick)


async def _tick_loop(driver: OAuth1Driver, interval: float) -> None:
    """Host loop: tick the driver until it settles or the server stops."""
    while True:
        state = await _tick(driver)
        if state is AuthState.AUTHORIZED and driver.callback_server is None:
            # Authorized and nothing left to release; keep polling slowly in
            # case the session is reset.
            await asyncio.sleep(interval * 10)
        else:
            await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: Any):
    """Lifespan context manager for the MCP server.

    Creates the driver and runs the host tick loop.
    """
    global _driver, _settings, _tick_lock

    # Initialize settings and driver
    try:
        _settings = get_settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Ensure OAUTH1_API_BASE_URL, "
            f"OAUTH1_CONSUMER_KEY and OAUTH1_CONSUMER_SECRET are set: {e}"
        ) from e

    configure_logging(_settings.log_level)
    _driver = OAuth1Driver(_settings)
    _tick_lock = asyncio.Lock()

    loop_task = None
    if _settings.tick_interval > 0:
        loop_task = asyncio.create_task(_tick_loop(_driver, _settings.tick_interval))

    try:
        yield
    finally:
        # Clean up on shutdown
        if loop_task is not None:
            loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await loop_task
        if _driver:
            await asyncio.to_thread(_driver.close)
            _driver = None
        _settings = None
        _tick_lock = None


# Create FastMCP server with lifespan
mcp = FastMCP("oauth1", lifespan=lifespan)


def _get_driver() -> OAuth1Driver:
    """Get the OAuth1Driver from module state."""
    if _driver is None:
        raise RuntimeError("OAuth1Driver not initialized - server not running")
    return _driver


def _describe_state(driver: OAuth1Driver) -> str:
    state = driver.state
    if state is AuthState.AUTHORIZED:
        name = driver.identity.screen_name
        who = f" as {name}" if name else ""
        return f"Connected{who}: signed API calls are available."
    if state is AuthState.FAILED:
        reason = driver.flags.failure_reason or "unknown reason"
        return (
            f"Authorization failed ({reason}).\n"
            "Use reset_authentication to start over."
        )
    if state is AuthState.AWAITING_VERIFIER_INPUT:
        return (
            "Waiting for the user to authorize the application at:\n"
            f"   {driver.verification_url}\n"
            "Use complete_authentication with the verification code if the "
            "provider shows one."
        )
    return f"Authorization in progress (state: {state.value})."


# ============================================================================
# Authentication Tools
# ============================================================================


@mcp.tool()
async def check_auth_status() -> str:
    """Check whether the provider account is connected.

    Returns:
        Authentication status message
    """
    try:
        return _describe_state(_get_driver())
    except Exception as e:
        return f"Error checking auth status: {str(e)}"


@mcp.tool()
async def start_authentication(max_steps: int = 5) -> str:
    """Start the account connection process.

    Obtains a request token and returns the URL the user must visit to
    authorize the connection.

    Args:
        max_steps: Maximum number of handshake steps to run

    Returns:
        Instructions with the authorization URL
    """
    try:
        driver = _get_driver()

        for _ in range(max_steps):
            state = await _tick(driver)
            if state in (
                AuthState.AUTHORIZED,
                AuthState.FAILED,
                AuthState.AWAITING_VERIFIER_INPUT,
            ):
                break

        if driver.state is not AuthState.AWAITING_VERIFIER_INPUT:
            return _describe_state(driver)

        return (
            "To connect your account:\n\n"
            f"1. Visit this URL:\n   {driver.verification_url}\n\n"
            "2. Log in and authorize the application\n\n"
            "3. If you are redirected back here the connection completes on "
            "its own; otherwise copy the verification code shown\n\n"
            "4. Use complete_authentication with the code to finish setup"
        )

    except RuntimeError as e:
        return str(e)
    except Exception as e:
        return f"Unexpected error: {str(e)}"


@mcp.tool()
async def complete_authentication(
    verifier: str, request_token: str | None = None
) -> str:
    """Complete the account connection.

    Args:
        verifier: The verification code from the provider's authorization page
        request_token: Optional request token the code belongs to

    Returns:
        Success or error message
    """
    try:
        driver = _get_driver()

        if request_token:
            driver.set_verifier_received(request_token, verifier)
        else:
            driver.set_request_token_verifier(verifier)

        await _tick(driver)
        return _describe_state(driver)

    except MismatchError as e:
        return f"Error completing authentication: {str(e)}"
    except Exception as e:
        return f"Unexpected error: {str(e)}"


@mcp.tool()
async def advance_authentication() -> str:
    """Run a single step of the authorization handshake.

    Returns:
        The resulting status
    """
    try:
        driver = _get_driver()
        await _tick(driver)
        return _describe_state(driver)
    except Exception as e:
        return f"Unexpected error: {str(e)}"


@mcp.tool()
async def reset_authentication(forget_credentials: bool = False) -> str:
    """Reset the authorization session, clearing any failure.

    Args:
        forget_credentials: Also delete the stored access token

    Returns:
        Confirmation message
    """
    try:
        driver = _get_driver()
        await _serialized(driver.reset, forget_credentials)
        stored = " Stored credentials were deleted." if forget_credentials else ""
        return (
            f"Authorization session reset.{stored}\n"
            "Use start_authentication to connect again."
        )
    except Exception as e:
        return f"Error resetting authentication: {str(e)}"


# ============================================================================
# API Tools
# ============================================================================


@mcp.tool()
async def api_get(uri: str, query: str = "") -> str:
    """Make a signed GET request against the provider API.

    Args:
        uri: Path appended to the API base URL (e.g., "/1.1/account/settings.json")
        query: Query string without the leading "?" (e.g., "count=5&page=2")

    Returns:
        The response body
    """
    try:
        driver = _get_driver()
        return await asyncio.to_thread(driver.get, uri, query)
    except ConfigurationError as e:
        return (
            f"Error: {str(e)}\n"
            "Use start_authentication to connect your account first."
        )
    except TransportError as e:
        return f"Error calling API: {str(e)}"
    except Exception as e:
        return f"Unexpected error: {str(e)}"


@mcp.tool()
async def api_post(uri: str, data: str = "") -> str:
    """Make a signed POST request against the provider API.

    Args:
        uri: Path appended to the API base URL
        data: Form-encoded body parameters (e.g., "status=hello")

    Returns:
        The response body
    """
    try:
        driver = _get_driver()
        return await asyncio.to_thread(driver.post, uri, data)
    except ConfigurationError as e:
        return (
            f"Error: {str(e)}\n"
            "Use start_authentication to connect your account first."
        )
    except TransportError as e:
        return f"Error calling API: {str(e)}"
    except Exception as e:
        return f"Unexpected error: {str(e)}"


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Run the OAuth1 MCP server."""
    logger.debug("Starting OAuth1 MCP server")
    mcp.run()


if __name__ == "__main__":
    main()
