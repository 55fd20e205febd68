"""
Plain-English diagnosis of why pages cannot be indexed.

Works from UrlInspection rows (or anything with the same attributes) and
groups the blocked pages by root cause.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

FIX_AUTO = 'auto'
FIX_CODE = 'code'
FIX_MANUAL = 'manual'

# Shown per problem type in the detailed explanation
URLS_PER_TYPE = 3


@dataclass
class IndexingProblem:
    url: str
    primary_issue: str
    explanation: str
    impact: str
    fixable: str
    fix_method: str
    index_status: str = ''
    fetch_status: str = ''
    robots_txt_state: str = ''

    def as_dict(self):
        return {
            'url': self.url,
            'primary_issue': self.primary_issue,
            'fixable': self.fixable,
            'fix_method': self.fix_method,
            'index_status': self.index_status,
            'fetch_status': self.fetch_status,
            'robots_txt_state': self.robots_txt_state,
        }


@dataclass
class IndexingAnalysis:
    total_affected_pages: int
    problems_by_type: Dict[str, List[IndexingProblem]] = field(default_factory=dict)
    auto_fixable_count: int = 0
    code_fixable_count: int = 0
    manual_only_count: int = 0
    summary: str = ''
    detailed_explanation: str = ''
    recommended_actions: List[str] = field(default_factory=list)

    @property
    def affected_urls(self) -> List[str]:
        return [p.url for problems in self.problems_by_type.values() for p in problems]


_DIAGNOSES = {
    'robots': (
        'Robots.txt Blocking',
        "Your website's robots.txt file is telling Google not to access this page.",
        'Google cannot crawl or index this page, so it will never appear in search results.',
        FIX_AUTO,
        'Update robots.txt file to allow Google access',
    ),
    'server_error': (
        'Server Error',
        'Your web server is returning an error when Google tries to access this page.',
        'Google cannot access the page content, so it cannot be indexed for search results.',
        FIX_CODE,
        'Fix server configuration or application errors',
    ),
    'not_found': (
        'Page Not Found',
        'This page returns a "Page Not Found" error. Either the page was deleted, moved, or the URL is incorrect.',
        "Google cannot find any content at this URL, so there's nothing to index.",
        FIX_CODE,
        'Create the missing page or set up a redirect to the correct location',
    ),
    'access_denied': (
        'Access Denied',
        'Your website is blocking Google from accessing this page (password protection, IP restrictions or server configuration).',
        'Google is being refused access to the page content, preventing indexing.',
        FIX_AUTO,
        'Update server configuration to allow search engine access',
    ),
    'redirect': (
        'Redirect Problem',
        'This page has a redirect, but Google is having trouble following it to the final destination page.',
        'Google cannot reach the actual content, so the page cannot be indexed properly.',
        FIX_CODE,
        'Fix redirect chain or update redirect destination',
    ),
    'generic': (
        'Indexing Issue',
        'Google is having trouble indexing this page due to technical issues that need investigation.',
        'The page may not appear in search results or may have limited visibility.',
        FIX_MANUAL,
        'Manual investigation needed to determine specific cause',
    ),
}


def _cause(inspection) -> str:
    fetch_status = (inspection.fetch_status or '').upper()
    index_status = (inspection.index_status or '').upper()

    if (inspection.robots_txt_state or '').upper() == 'DISALLOWED':
        return 'robots'
    if fetch_status == 'SERVER_ERROR' or fetch_status.startswith('5'):
        return 'server_error'
    if fetch_status in ('SOFT_404', '404', 'NOT_FOUND'):
        return 'not_found'
    if fetch_status in ('ACCESS_DENIED', '403'):
        return 'access_denied'
    if 'REDIRECT' in fetch_status and index_status == 'FAIL':
        return 'redirect'
    return 'generic'


def diagnose(inspection) -> IndexingProblem:
    primary_issue, explanation, impact, fixable, fix_method = _DIAGNOSES[_cause(inspection)]
    return IndexingProblem(
        url=inspection.inspected_url,
        primary_issue=primary_issue,
        explanation=explanation,
        impact=impact,
        fixable=fixable,
        fix_method=fix_method,
        index_status=inspection.index_status or '',
        fetch_status=inspection.fetch_status or 'unknown',
        robots_txt_state=inspection.robots_txt_state or '',
    )


def is_blocked(inspection) -> bool:
    return not inspection.can_be_indexed and (inspection.index_status or '') != 'PASS'


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _summary(total: int, problems_by_type: Dict[str, List[IndexingProblem]]) -> str:
    types = list(problems_by_type)
    if total == 1:
        return f"1 page has a {types[0].lower()} preventing it from appearing in Google search results."
    if len(types) == 1:
        return f"{total} pages have {types[0].lower()} issues preventing them from appearing in Google search results."
    return f"{total} pages have various indexing problems preventing them from appearing in Google search results."


def _detailed_explanation(problems_by_type: Dict[str, List[IndexingProblem]]) -> str:
    lines = ["Here's what's happening with your pages:", '']
    for problem_type, problems in problems_by_type.items():
        lines.append(f"**{problem_type} ({_plural(len(problems), 'page')}):**")
        lines.append(problems[0].explanation)
        lines.append('')
        for problem in problems[:URLS_PER_TYPE]:
            lines.append(f"- {problem.url}")
        if len(problems) > URLS_PER_TYPE:
            lines.append(f"- ...and {len(problems) - URLS_PER_TYPE} more pages")
        lines.append('')
    return '\n'.join(lines).strip()


def _recommended_actions(total: int, auto: int, code: int) -> List[str]:
    actions = []
    if auto:
        actions.append(f"{_plural(auto, 'issue')} can be fixed automatically.")
    if code:
        actions.append(f"{_plural(code, 'issue')} need code changes; follow the fix method listed for each page.")
    manual = total - auto - code
    if manual:
        actions.append(f"{_plural(manual, 'issue')} need manual review to determine the best solution.")
    if auto:
        actions.append('After fixes are applied, it may take 24-48 hours for Google to re-crawl your pages.')
    return actions


def analyze_indexing_issues(inspections: Iterable) -> Optional[IndexingAnalysis]:
    """
    Diagnose every blocked inspection. Returns None when nothing is blocked.
    """
    problems = [diagnose(inspection) for inspection in inspections if is_blocked(inspection)]
    if not problems:
        return None

    problems_by_type: Dict[str, List[IndexingProblem]] = {}
    for problem in problems:
        problems_by_type.setdefault(problem.primary_issue, []).append(problem)

    auto = sum(1 for p in problems if p.fixable == FIX_AUTO)
    code = sum(1 for p in problems if p.fixable == FIX_CODE)
    logger.info(f"Indexing analysis: {len(problems)} blocked page(s) across {len(problems_by_type)} cause(s)")

    return IndexingAnalysis(
        total_affected_pages=len(problems),
        problems_by_type=problems_by_type,
        auto_fixable_count=auto,
        code_fixable_count=code,
        manual_only_count=len(problems) - auto - code,
        summary=_summary(len(problems), problems_by_type),
        detailed_explanation=_detailed_explanation(problems_by_type),
        recommended_actions=_recommended_actions(len(problems), auto, code),
    )
