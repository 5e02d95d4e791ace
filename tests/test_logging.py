"""
Tests for updatepolicy.logging module.

Tests the logger interface including:
- Verbose and debug gating of DefaultLogger
- Silent default global logger
- Policies and managers picking up the global logger
"""

from __future__ import annotations

import pytest

from updatepolicy.logging import (
    DefaultLogger,
    SilentLogger,
    get_global_logger,
    get_logger,
    set_global_logger,
)
from updatepolicy.manager import UpdateManager
from updatepolicy.policy import FleetPolicy


@pytest.fixture
def restore_global_logger():
    """Restore the global logger after the test."""
    previous = get_global_logger()
    yield
    set_global_logger(previous)


class TestDefaultLogger:
    """Tests for DefaultLogger output."""

    def test_quiet_by_default(self, capsys):
        """Test that nothing is printed without verbosity."""
        logger = DefaultLogger()

        logger.verbose("POLICY", "hidden")
        logger.debug("POLICY", "hidden")

        assert capsys.readouterr().out == ""

    def test_verbose(self, capsys):
        """Test that verbose mode prints verbose lines only."""
        logger = get_logger(verbose=True)

        logger.verbose("URL", "Advancing from URL 0 to URL 1")
        logger.debug("URL", "hidden")

        assert capsys.readouterr().out == "[URL] Advancing from URL 0 to URL 1\n"

    def test_debug_implies_verbose(self, capsys):
        """Test that debug mode prints both levels."""
        logger = get_logger(debug=True)

        logger.verbose("SCATTER", "one")
        logger.debug("SCATTER", "two")

        assert capsys.readouterr().out == "[SCATTER] one\n[SCATTER] two\n"


class TestGlobalLogger:
    """Tests for the global logger."""

    def test_silent_by_default(self):
        """Test that the global logger is silent unless configured."""
        assert isinstance(get_global_logger(), SilentLogger)

    def test_used_by_policies(self, restore_global_logger):
        """Test that policies built without a logger use the global one."""
        logger = DefaultLogger(verbose=True)
        set_global_logger(logger)

        assert FleetPolicy().logger is logger

    def test_used_by_manager(self, facts, restore_global_logger, capsys):
        """Test that manager decisions are logged through the global logger."""
        set_global_logger(DefaultLogger(verbose=True))

        UpdateManager(facts).update_download_allowed()

        assert "[POLICY] FleetPolicy::UpdateDownloadAllowed -> True" in (
            capsys.readouterr().out
        )
