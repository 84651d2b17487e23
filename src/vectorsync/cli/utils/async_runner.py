"""
Async execution utilities for CLI commands
"""

import asyncio
import signal
import sys
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import click
from rich.console import Console

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def async_command(f: F) -> Callable[..., Any]:
    """
    Decorator to run async functions in CLI context with proper error handling
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return asyncio.run(f(*args, **kwargs))  # type: ignore
        except KeyboardInterrupt:
            console = Console()
            console.print("\n[yellow]Operation interrupted by user[/yellow]")
            sys.exit(130)  # Standard exit code for SIGINT
        except (click.ClickException, click.exceptions.Exit):
            raise
        except Exception as e:
            console = Console()
            console.print(f"[red]Operation failed: {e}[/red]")
            sys.exit(1)

    return wrapper


class GracefulKiller:
    """
    Turn SIGINT/SIGTERM into an asyncio event inside the running loop
    """

    def __init__(self) -> None:
        self.shutdown_event = asyncio.Event()
        self.received_signal: int = 0
        self._installed: list[int] = []

    def install(self) -> None:
        """Register signal handlers on the running event loop"""
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / not the main thread
                pass

    def uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def _handle_signal(self, signum: int) -> None:
        self.received_signal = signum
        self.shutdown_event.set()

    @property
    def kill_now(self) -> bool:
        return self.shutdown_event.is_set()

    async def wait(self) -> None:
        await self.shutdown_event.wait()
