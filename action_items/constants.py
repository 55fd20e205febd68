"""
Vocabulary shared by the action item ledger, lifecycle and verification.
"""
from types import MappingProxyType

SEVERITY_CHOICES = [
    ('critical', 'Critical'),
    ('high', 'High'),
    ('medium', 'Medium'),
    ('low', 'Low'),
]

CATEGORY_CHOICES = [
    ('indexing', 'Indexing'),
    ('sitemap', 'Sitemap'),
    ('robots', 'Robots.txt'),
    ('schema', 'Schema'),
    ('mobile', 'Mobile'),
    ('performance', 'Performance'),
    ('meta_tags', 'Meta Tags'),
    ('alt_tags', 'Alt Tags'),
    ('core_vitals', 'Core Web Vitals'),
    ('security', 'Security'),
]

STATUS_CHOICES = [
    ('detected', 'Detected'),
    ('assigned', 'Assigned'),
    ('in_progress', 'In Progress'),
    ('completed', 'Completed'),
    ('needs_verification', 'Needs Verification'),
    ('verified', 'Verified'),
    ('closed', 'Closed'),
    ('dismissed', 'Dismissed'),
]

VERIFICATION_STATUS_CHOICES = [
    ('pending', 'Pending'),
    ('verified', 'Verified'),
    ('failed', 'Failed'),
    ('needs_recheck', 'Needs Recheck'),
]

IMPACT_CHOICES = [
    ('high', 'High'),
    ('medium', 'Medium'),
    ('low', 'Low'),
]

EFFORT_CHOICES = [
    ('easy', 'Easy'),
    ('medium', 'Medium'),
    ('hard', 'Hard'),
]

# Statuses that never come back; everything else blocks a duplicate
TERMINAL_STATUSES = frozenset({'verified', 'closed', 'dismissed'})

# Statuses the verification cycle picks up
AWAITING_VERIFICATION_STATUSES = frozenset({'completed', 'needs_verification'})
RECHECK_VERIFICATION_STATUSES = frozenset({'pending', 'needs_recheck'})

SEVERITY_BONUS = MappingProxyType({
    'critical': 40,
    'high': 25,
    'medium': 10,
    'low': 0,
})

IMPACT_BONUS = MappingProxyType({
    'high': 20,
    'medium': 10,
    'low': 5,
})

BASE_PRIORITY = 50
MAX_PRIORITY = 100
MAX_AFFECTED_BONUS = 10
