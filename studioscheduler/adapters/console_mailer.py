"""
Mock mail sender printing messages to the console instead of delivering them.
"""

from typing import List, Optional

from rich.console import Console
from rich.panel import Panel


class ConsoleMailer:
    """
    Mail sender for local use without Microsoft Graph credentials.

    Messages are printed and kept in ``sent`` so callers can inspect them.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.sent: List[dict] = []

    async def send_mail(self, to: str, subject: str, text: str, html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        self.console.print(
            Panel(text, title=f"[bold]{subject}[/bold]", subtitle=f"to {to}", border_style="cyan")
        )
