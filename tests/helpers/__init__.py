"""Test helper utilities for the electrsd test suite."""

from tests.helpers.cli_assertions import (
    assert_command_failed,
    assert_command_success,
    assert_error_message,
    assert_output_contains,
    assert_prints_path,
)
from tests.helpers.processes import process_exists, wait_for

__all__ = [
    "assert_command_success",
    "assert_command_failed",
    "assert_output_contains",
    "assert_error_message",
    "assert_prints_path",
    "process_exists",
    "wait_for",
]
