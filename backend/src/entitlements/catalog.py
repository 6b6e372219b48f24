"""Default plan catalog: features, prices and the entitlement matrix.

Seeded by ``PlanCatalog.seed_default_catalog`` (see ``scripts/seed_catalog.py``).
Prices are in ZAR cents; a QUOTA cap of ``None`` is unlimited.
"""
from dataclasses import dataclass

from entitlements.models.feature import FeatureKind
from entitlements.models.plan import PlanInterval, PlanTier, Product


def rands(amount: int) -> int:
    """Convert whole rands to cents."""
    return amount * 100


@dataclass(frozen=True)
class FeatureSpec:
    key: str
    name: str
    description: str
    kind: FeatureKind
    unit: str | None = None


@dataclass(frozen=True)
class GrantSpec:
    """Per-plan grant: ``enabled`` for TOGGLE, ``monthly_cap`` for QUOTA."""

    enabled: bool = True
    monthly_cap: int | None = None
    overage_unit_cents: int | None = None


def toggle(enabled: bool) -> GrantSpec:
    return GrantSpec(enabled=enabled)


def quota(cap: int | None) -> GrantSpec:
    return GrantSpec(enabled=True, monthly_cap=cap)


UNLIMITED = quota(None)


FEATURES: list[FeatureSpec] = [
    # Organization features (recruiter and corporate)
    FeatureSpec("job_posts", "Job Posts", "Number of active job postings per month", FeatureKind.QUOTA, "posts"),
    FeatureSpec(
        "candidates",
        "Candidates",
        "Number of candidate profiles/applications you can manage per month",
        FeatureKind.QUOTA,
        "candidates",
    ),
    FeatureSpec("ai_screenings", "AI Screenings", "Automated AI screening runs per month", FeatureKind.QUOTA, "runs"),
    FeatureSpec("fraud_ai", "Fraud & Spam AI", "Automated fraud/spam detection for applications", FeatureKind.TOGGLE),
    FeatureSpec(
        "competency_tests", "Competency Tests (AI)", "AI-generated tests you can issue per month", FeatureKind.QUOTA, "tests"
    ),
    FeatureSpec(
        "interview_agent", "Interview Agent (AI)", "Structured AI interview sessions per month", FeatureKind.QUOTA, "interviews"
    ),
    FeatureSpec("jobdesc_ai", "Job Description Agent", "Generate/refine job descriptions with AI", FeatureKind.TOGGLE),
    FeatureSpec("whatsapp_apply_org", "WhatsApp Apply (Org)", "Enable WhatsApp-first application channel", FeatureKind.TOGGLE),
    # Individual features
    FeatureSpec("browse_jobs", "Browse Jobs", "Search & browse all public jobs", FeatureKind.TOGGLE),
    FeatureSpec("cv_builder", "Build CV", "Create branded CVs in the builder", FeatureKind.QUOTA, "CVs"),
    FeatureSpec("cv_upload_ai", "Upload CV (AI Parse)", "AI-powered CV parsing uploads", FeatureKind.QUOTA, "uploads"),
    FeatureSpec("match_agent", "Job Match Agent", "AI matches your profile to relevant jobs", FeatureKind.TOGGLE),
    FeatureSpec("whatsapp_apply_user", "WhatsApp Apply", "Apply to jobs via WhatsApp flow", FeatureKind.TOGGLE),
    FeatureSpec("ai_interview_coach", "AI Interview Coach", "Practice interviews with AI coach", FeatureKind.TOGGLE),
    FeatureSpec("cv_review_ai", "Review my CV (AI)", "Automated AI review suggestions for CVs", FeatureKind.TOGGLE),
    FeatureSpec("career_visualizer", "Career Path Visualizer", "AI career roadmap visualization", FeatureKind.TOGGLE),
]


# Monthly price per product/tier; annual plans charge ten months
MONTHLY_PRICES: dict[tuple[Product, PlanTier], int] = {
    (Product.INDIVIDUAL, PlanTier.FREE): rands(0),
    (Product.INDIVIDUAL, PlanTier.STANDARD): rands(99),
    (Product.INDIVIDUAL, PlanTier.PREMIUM): rands(299),
    (Product.RECRUITER, PlanTier.FREE): rands(0),
    (Product.RECRUITER, PlanTier.STANDARD): rands(799),
    (Product.RECRUITER, PlanTier.PREMIUM): rands(1999),
    (Product.CORPORATE, PlanTier.FREE): rands(0),
    (Product.CORPORATE, PlanTier.STANDARD): rands(799),
    (Product.CORPORATE, PlanTier.PREMIUM): rands(1999),
}

ANNUAL_MONTHS_CHARGED = 10


def plan_price(product: Product, tier: PlanTier, interval: PlanInterval) -> int:
    """List price in cents for a catalog plan."""
    monthly = MONTHLY_PRICES[(product, tier)]
    return monthly * ANNUAL_MONTHS_CHARGED if interval == PlanInterval.ANNUAL else monthly


# Grants are identical for the monthly and annual plan of a product/tier
GRANTS: dict[tuple[Product, PlanTier], dict[str, GrantSpec]] = {
    (Product.RECRUITER, PlanTier.FREE): {
        "job_posts": quota(2),
        "candidates": quota(10),
        "ai_screenings": quota(50),
        "fraud_ai": toggle(True),
        "competency_tests": quota(10),
        "interview_agent": quota(10),
        "jobdesc_ai": toggle(False),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.RECRUITER, PlanTier.STANDARD): {
        "job_posts": quota(50),
        "candidates": quota(100),
        "ai_screenings": UNLIMITED,
        "fraud_ai": toggle(True),
        "competency_tests": UNLIMITED,
        "interview_agent": UNLIMITED,
        "jobdesc_ai": toggle(True),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.RECRUITER, PlanTier.PREMIUM): {
        "job_posts": UNLIMITED,
        "candidates": UNLIMITED,
        "ai_screenings": UNLIMITED,
        "fraud_ai": toggle(True),
        "competency_tests": UNLIMITED,
        "interview_agent": UNLIMITED,
        "jobdesc_ai": toggle(True),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.CORPORATE, PlanTier.FREE): {
        "job_posts": quota(1),
        "candidates": quota(5),
        "ai_screenings": quota(5),
        "fraud_ai": toggle(True),
        "competency_tests": quota(2),
        "interview_agent": quota(2),
        "jobdesc_ai": toggle(False),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.CORPORATE, PlanTier.STANDARD): {
        "job_posts": quota(5),
        "candidates": quota(50),
        "ai_screenings": UNLIMITED,
        "fraud_ai": toggle(True),
        "competency_tests": UNLIMITED,
        "interview_agent": UNLIMITED,
        "jobdesc_ai": toggle(True),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.CORPORATE, PlanTier.PREMIUM): {
        "job_posts": UNLIMITED,
        "candidates": UNLIMITED,
        "ai_screenings": UNLIMITED,
        "fraud_ai": toggle(True),
        "competency_tests": UNLIMITED,
        "interview_agent": UNLIMITED,
        "jobdesc_ai": toggle(True),
        "whatsapp_apply_org": toggle(True),
    },
    (Product.INDIVIDUAL, PlanTier.FREE): {
        "browse_jobs": toggle(True),
        "cv_builder": quota(1),
        "cv_upload_ai": quota(0),  # Not available on free
        "match_agent": toggle(False),
        "whatsapp_apply_user": toggle(False),
        "ai_interview_coach": toggle(False),
        "cv_review_ai": toggle(False),
        "career_visualizer": toggle(False),
    },
    (Product.INDIVIDUAL, PlanTier.STANDARD): {
        "browse_jobs": toggle(True),
        "cv_builder": UNLIMITED,
        "cv_upload_ai": quota(10),
        "match_agent": toggle(True),
        "whatsapp_apply_user": toggle(True),
        "ai_interview_coach": toggle(True),
        "cv_review_ai": toggle(False),
        "career_visualizer": toggle(False),
    },
    (Product.INDIVIDUAL, PlanTier.PREMIUM): {
        "browse_jobs": toggle(True),
        "cv_builder": UNLIMITED,
        "cv_upload_ai": UNLIMITED,
        "match_agent": toggle(True),
        "whatsapp_apply_user": toggle(True),
        "ai_interview_coach": toggle(True),
        "cv_review_ai": toggle(True),
        "career_visualizer": toggle(True),
    },
}
