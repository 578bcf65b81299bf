"""CLI module for Evidence Vault.

This package provides the command-line interface for saving a login
session and running evidence capture over a registrant CSV.
"""

from .runner import (
    # Exit codes
    ExitCode,

    # Main CLI runner
    CLIRunner,
    configure_logging,
)
from .config import EvidenceConfiguration, load_configuration

__all__ = [
    'ExitCode',
    'CLIRunner',
    'configure_logging',
    'EvidenceConfiguration',
    'load_configuration',
]
