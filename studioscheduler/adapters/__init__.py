"""
Adapters layer - in-memory stores, dataset files and Microsoft Graph mail.
"""

from .console_mailer import ConsoleMailer
from .graph_authenticator import GraphAuthenticator
from .graph_mailer import GraphMailer
from .memory_ledger import InMemoryCreditLedger
from .memory_store import InMemoryStudioStore
from .seed_data import StudioDataset, load_dataset, save_dataset

__all__ = [
    "ConsoleMailer",
    "GraphAuthenticator",
    "GraphMailer",
    "InMemoryCreditLedger",
    "InMemoryStudioStore",
    "StudioDataset",
    "load_dataset",
    "save_dataset",
]
