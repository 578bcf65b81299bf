"""Configuration for evidence capture.

Selectors, keywords and timeouts describing the target application. The
defaults match the registrant pages of the event platform the pipeline was
built for; all of them can be overridden from the YAML configuration file.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.evidence import EvidenceKind


DEFAULT_SIDE_NAV_SELECTORS = [
    'aside',
    'nav[role="navigation"]',
    '[aria-label*="Navigation" i]',
    '[data-testid*="sidebar" i]',
    '[class*="sidebar" i]',
    '[class*="Sidebar"]',
    '.left-panel',
    '.leftpanel',
    '.nav-left',
    '.swoogo-left',
    '.app-sidebar',
]

DEFAULT_EMAIL_REGION_SELECTORS = [
    '[data-testid*="email" i]',
    '.email-body',
    '.emailBody',
    '.email',
    '[class*="email" i]',
    '[id*="email" i]',
]

DEFAULT_LABEL_SELECTORS = [
    'h1',
    'header h1',
    '[data-testid*="registrant" i]',
    '.registrant-name',
    '[class*="Registrant" i]',
]


class CaptureSettings(BaseModel):
    """Tunables for navigation, readiness gating and capture strategies."""

    # Timeouts
    navigation_timeout_ms: int = Field(default=30000, ge=1000, description="page.goto timeout")
    gate_timeout_ms: int = Field(default=30000, ge=0, description="Stable-state gate timeout")
    selector_timeout_ms: int = Field(default=5000, ge=0, description="Element lookup timeout")
    frame_timeout_ms: int = Field(default=15000, ge=0, description="Embedded frame wait")
    delay_ms: int = Field(default=300, ge=0, description="Extra delay after each navigation")
    settle_ms: int = Field(default=300, ge=0, description="Quiet window after network idle")
    render_settle_ms: int = Field(default=250, ge=0, description="Pause before each screenshot")
    lazy_image_wait_ms: int = Field(default=400, ge=0, description="Pause inside expanded frames")
    menu_open_wait_ms: int = Field(default=150, ge=0, description="Pause after opening the actions menu")

    # Output
    pdf: bool = Field(default=False, description="Also export a PDF for full-page captures")
    write_manifest: bool = Field(default=True, description="Write a per-entity status manifest")

    # Readiness
    loading_indicator_selector: str = Field(default="#spinner-overlay")

    # Resolution
    actions_button_pattern: str = Field(
        default="actions",
        description="Accessible name pattern of the action-disclosure control"
    )
    keywords: Dict[EvidenceKind, List[str]] = Field(
        default_factory=lambda: {
            EvidenceKind.CONFIRMATION: ["confirmation"],
            EvidenceKind.INVOICE: ["invoice"],
        }
    )

    # Capture targets
    side_nav_selectors: List[str] = Field(default_factory=lambda: list(DEFAULT_SIDE_NAV_SELECTORS))
    email_region_selectors: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EMAIL_REGION_SELECTORS)
    )
    label_selectors: List[str] = Field(default_factory=lambda: list(DEFAULT_LABEL_SELECTORS))
    email_preview_frame_pattern: str = Field(default="/frontend/preview/email")

    # Email preview address
    send_email_path: str = Field(default="/loggedin/registrant/send-email")
    send_email_base_url: str = Field(
        default="https://www.swoogo.com/loggedin/registrant/send-email"
    )
    email_category: Optional[str] = Field(
        default="4840855",
        description="Default email type used when the preview address has to be constructed"
    )
    collection_param: str = Field(default="eventId")

    @field_validator('keywords')
    @classmethod
    def validate_keywords(cls, v):
        for kind in (EvidenceKind.CONFIRMATION, EvidenceKind.INVOICE):
            if not v.get(kind):
                raise ValueError(f"keywords for {kind.value} must not be empty")
        return v

    def keywords_for(self, kind: EvidenceKind) -> List[str]:
        return list(self.keywords.get(kind, []))
