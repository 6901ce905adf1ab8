# Logging and console output for the ArcChat service.
# Date: 2025-10-02
# Version: 0.2.0

import logging
from rich.logging import RichHandler
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# Define a custom logging level for success messages
SUCCESS_LEVEL_NUM = 25

logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")

def success_log(self, message, *args, **kwargs):
    if self.isEnabledFor(SUCCESS_LEVEL_NUM):
        self._log(SUCCESS_LEVEL_NUM, message, args, **kwargs)

# Register the custom success method to the logging.Logger class
if not hasattr(logging.Logger, 'success'):
    setattr(logging.Logger, 'success', success_log)

class ConsoleManager:
    """
    A singleton class that manages the console output for ArcChat.
    It uses Rich for logging, turn separators and result panels.
    """
    def __init__(self, logger_name: str = "ArcChat"):
        custom_theme = Theme({
            "logging.level.success": "bold green"
        })
        self._console = Console(theme=custom_theme, stderr=True)
        self._logger = self._setup_logger(logger_name)

    def _setup_logger(self, logger_name: str) -> logging.Logger:
        logger = logging.getLogger(logger_name)
        if logger.hasHandlers():
            # If logger is already configured, don't add handlers again
            return logger

        logger.setLevel(logging.INFO)
        handler = RichHandler(
            console=self._console,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            keywords=["INFO", "SUCCESS", "WARNING", "ERROR", "DEBUG", "CRITICAL"],
            show_path=False
        )
        handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        return logger

    def set_level(self, level):
        """Accepts a level number or name, e.g. logging.DEBUG or "DEBUG"."""
        self._logger.setLevel(level.upper() if isinstance(level, str) else level)

    def debug(self, message: str):
        self._logger.debug(message)

    def info(self, message: str):
        self._logger.info(message)

    def success(self, message: str):
        self._logger.success(message)

    def warning(self, message: str):
        self._logger.warning(message)

    def error(self, message: str):
        self._logger.error(message)

    def exception(self, message: str):
        self._logger.exception(message)

    def rule(self, title: str, style: str = "cyan"):
        self._console.rule(f"[bold {style}]{title}[/bold {style}]", style=style)

    def display_actions_table(self, actions: list, title: str):
        """Renders the action results of one finalized turn."""
        table = Table(show_header=True, header_style="bold magenta", box=None, show_edge=False)
        table.add_column("Action", style="cyan", no_wrap=True, width=24)
        table.add_column("Result", style="white")

        for action in actions:
            mark = "[green]✓[/green]" if action.success else "[red]✗[/red]"
            table.add_row(f"{mark} {action.type}", action.description or action.error or "")

        panel = Panel(table, title=f"[bold green]{title}[/bold green]", border_style="green")
        self._console.print(panel)

    def display_error_panel(self, title: str, error_message: str):
        panel = Panel(error_message, title=f"[bold red]{title}[/bold red]", border_style="red")
        self._console.print(panel)

# Create a singleton instance for global use
console = ConsoleManager()
