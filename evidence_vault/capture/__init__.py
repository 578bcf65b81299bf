"""Browser capture for Evidence Vault.

Main Components:
- Stable State Gate: waits for the loading overlay and network to settle
- Resource Resolver: finds confirmation/invoice/email preview surfaces
- Capture Strategies: full page, embedded frame and region crop screenshots
- Evidence Orchestrator: per-entity state machine recording six artifacts
- Browser Factory: authenticated browser context lifecycle

Usage:
    from evidence_vault.capture import BrowserConfig, BrowserFactory, EvidenceOrchestrator

    async with BrowserFactory(BrowserConfig(storage_state=Path("auth.json"))) as factory:
        async with factory.page() as page:
            job = await EvidenceOrchestrator(page, Path("evidence")).run(entity)
"""

__all__ = [
    # Configuration
    "CaptureSettings",

    # Main components
    "StableStateGate",
    "ResourceResolver",
    "Resolution",
    "ResolutionPath",
    "MenuSurface",
    "EmailPreviewAddress",
    "FallbackChain",
    "ChainResult",
    "StepOutcome",
    "CaptureStrategy",
    "FullPageStrategy",
    "EmbeddedFrameStrategy",
    "RegionCropStrategy",
    "EvidenceOrchestrator",
    "CaptureState",
    "BrowserFactory",
    "BrowserConfig",

    # Convenience functions
    "hidden_side_navigation",
    "expanded_scroll_containers",
    "parse_viewport",
    "save_login_state",
]

from .config import CaptureSettings
from .stable_state import StableStateGate
from .fallback import ChainResult, FallbackChain, StepOutcome
from .dom_overrides import expanded_scroll_containers, hidden_side_navigation
from .resolver import (
    EmailPreviewAddress,
    MenuSurface,
    Resolution,
    ResolutionPath,
    ResourceResolver,
)
from .strategies import (
    CaptureStrategy,
    EmbeddedFrameStrategy,
    FullPageStrategy,
    RegionCropStrategy,
)
from .orchestrator import CaptureState, EvidenceOrchestrator
from .browser_factory import (
    BrowserConfig,
    BrowserFactory,
    parse_viewport,
    save_login_state,
)
