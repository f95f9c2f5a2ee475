"""Built-in field taxonomy: ordered class list and class -> category mapping.

The order of ``ORDERED_CLASSES`` is the output layer of the learned
classifier and is part of the persisted model contract. Append new classes
at the end; never reorder or remove, or every saved snapshot is invalidated.

Categories
----------
identity          names and photo
contact           e-mail and phone numbers
online_presence   profile URLs
location          address parts, current/preferred location, timezone
work_experience   employer, title, employment dates
education         institution, degree, study dates
skills            skills, certifications, languages
demographics      voluntary EEO questions
compensation      salary
availability      notice period, work type, shifts
preferences       remote/job-type preferences, goals
legal             work authorization, background, tax id
federal           military and federal service
supplemental      cover letter, free-text notes, agreements
application       resume attachments, referral source
misc              unknown and unparsed questions
"""
from __future__ import annotations

UNKNOWN_CLASS = "unknown"
GENERIC_QUESTION_CLASS = "generic_question"
DEFAULT_CATEGORY = "misc"

CATEGORIES: tuple[str, ...] = (
    "identity",
    "contact",
    "online_presence",
    "location",
    "work_experience",
    "education",
    "skills",
    "demographics",
    "compensation",
    "availability",
    "preferences",
    "legal",
    "federal",
    "supplemental",
    "application",
    "misc",
)

# ---------------------------------------------------------------------------
# Category -> classes, in model output order
# ---------------------------------------------------------------------------

_CLASSES_BY_CATEGORY: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("misc", (UNKNOWN_CLASS,)),
    ("identity", (
        "first_name", "middle_name", "last_name", "full_name",
        "preferred_name", "profile_photo",
    )),
    ("contact", ("email", "email_secondary", "phone", "phone_home")),
    ("online_presence", ("linkedin_url", "github_url", "portfolio_url", "twitter_url")),
    ("location", (
        "address_line", "city", "state", "zip_code", "country",
        "current_location", "timezone", "preferred_location",
    )),
    ("work_experience", (
        "job_title", "current_title", "company_name", "current_company",
        "job_start_date", "job_end_date", "job_description", "job_location",
        "years_experience",
    )),
    ("education", (
        "institution_name", "degree_type", "field_of_study", "major", "gpa",
        "graduation_date", "education_start_date", "education_end_date",
        "education_current", "education_level",
    )),
    ("skills", (
        "skills", "technical_skills", "certifications", "languages",
        "language_proficiency", "years_skill",
    )),
    ("demographics", ("gender", "race", "ethnicity", "veteran", "disability", "marital_status")),
    ("compensation", ("salary_current", "salary_expected")),
    ("availability", ("notice_period_in_days", "work_type", "shift_preference")),
    ("preferences", ("remote_preference", "job_type_preference", "career_goals", "interest_areas")),
    ("legal", (
        "work_auth", "sponsorship", "visa_status", "citizenship", "clearance",
        "legal_age", "tax_id", "date_of_birth", "background_check",
        "criminal_record", "drug_test",
    )),
    ("federal", (
        "military_service", "service_dates", "discharge_status",
        "federal_employee", "federal_grade", "schedule_a",
    )),
    ("supplemental", ("cover_letter", "additional_info", "intro_note", "agreement")),
    ("application", ("resume", "resume_text", "resume_upload")),
    # Appended after the first-generation 87-class output layer.
    ("misc", (GENERIC_QUESTION_CLASS,)),
    ("application", ("referral_source",)),
)

ORDERED_CLASSES: tuple[str, ...] = tuple(
    name for _, names in _CLASSES_BY_CATEGORY for name in names
)

CLASS_CATEGORY_MAP: dict[str, str] = {
    name: category for category, names in _CLASSES_BY_CATEGORY for name in names
}

# ---------------------------------------------------------------------------
# Arbitration category groups
# ---------------------------------------------------------------------------

# Short, formulaic labels: regexes are reliable here.
PATTERN_FAVORED_CATEGORIES: frozenset[str] = frozenset({
    "contact", "identity", "online_presence", "location",
})

# Free-text, context-dependent labels: the network generalises better.
CONTEXT_FAVORED_CATEGORIES: frozenset[str] = frozenset({
    "work_experience", "education", "skills", "availability",
})

# Pairs/triples the classifiers habitually confuse with each other.
CONFLICT_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"salary_current", "salary_expected"}),
    frozenset({"education_start_date", "education_end_date", "graduation_date"}),
    frozenset({"job_location", "current_location", "preferred_location"}),
    frozenset({"field_of_study", "major"}),
    frozenset({"years_experience", "years_skill"}),
)
