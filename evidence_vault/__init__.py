"""Evidence Vault - per-registrant evidence capture, bundling and archival.

Drives an authenticated browser session through each registrant's pages,
captures a fixed set of evidence screenshots, packs them into one archive
per registrant and moves the archive to durable object storage.
"""

__version__ = "1.0.0"
