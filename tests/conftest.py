"""
Pytest configuration for opinion topics tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: Multi-component runs against the in-memory stores in tests/fakes.py
- slow: External APIs (real completion service, database, mirror)

Run tiers:
- pytest                          # Full suite
- pytest -m fast                  # Fast only (quick feedback)
- pytest -m "not slow"            # Fast + Medium (pre-merge)
- pytest -n auto -m "not slow"    # Parallel pre-merge run

Unmarked tests are auto-assigned to 'fast' tier. Tests marked
@pytest.mark.integration (without tier) default to 'medium'.

API Key Safety:
- Fast/medium runs force-set a fake OPENAI_API_KEY to prevent accidental API calls
- Only slow tests (and full suite) preserve real API keys from environment
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Assign 'fast' to unmarked tests and 'medium' to unmarked integration tests."""
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Force a fake OpenAI key unless slow tests are selected."""
    markexpr = getattr(config.option, 'markexpr', '') or ''

    includes_slow_tests = (
        not markexpr or
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    if includes_slow_tests:
        os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key-for-testing")
    else:
        os.environ["OPENAI_API_KEY"] = "sk-test-fake-key-for-testing"

    # Never let a test talk to a configured mirror
    os.environ["MIRROR_DISABLE_SYNC"] = "true"


# =============================================================================
# Session-Scoped Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path (session-scoped for efficiency)."""
    return PROJECT_ROOT
