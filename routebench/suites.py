"""
Suite library: built-in suites plus user-defined ones.

User suites live in a key-value store and override built-in suites that
share their id.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from routebench.config import BUILTIN_SUITES_PATH
from routebench.errors import SuiteNotFoundError
from routebench.models import TestSuite
from routebench.storage import KeyValueStore
from routebench.utils import load_results

logger = logging.getLogger(__name__)

CUSTOM_SUITES_KEY = "routebench.customSuites"


def validate_suite_shape(data: Any) -> bool:
    """A suite needs a string id, a string name and a list of cases."""
    return (
        isinstance(data, dict)
        and isinstance(data.get("id"), str)
        and isinstance(data.get("name"), str)
        and isinstance(data.get("cases"), list)
    )


def normalize_suite(data: dict) -> TestSuite:
    """Build a TestSuite, dropping unknown keys and malformed cases."""
    cases = [
        c for c in data.get("cases", [])
        if isinstance(c, dict) and isinstance(c.get("id"), str)
    ]
    return TestSuite.from_dict({**data, "cases": cases})


def merge_suites(
    builtin: list[TestSuite],
    custom: list[TestSuite],
) -> list[TestSuite]:
    """Merge by id; a custom suite replaces the built-in one in place."""
    merged: dict[str, TestSuite] = {}
    for suite in builtin:
        merged[suite.id] = suite
    for suite in custom:
        merged[suite.id] = suite
    return list(merged.values())


def load_builtin_suites(path: Path = BUILTIN_SUITES_PATH) -> list[TestSuite]:
    """Read {"suites": [...]} from disk; any failure yields no suites."""
    try:
        data = load_results(path)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load suites from %s: %s", path, e)
        return []

    if not isinstance(data, dict) or not isinstance(data.get("suites"), list):
        logger.error("Suites file %s has no 'suites' array", path)
        return []
    return [normalize_suite(s) for s in data["suites"] if validate_suite_shape(s)]


def parse_suites_document(text: str) -> list[TestSuite]:
    """
    Parse an imported suites document.

    Accepts a bare array, {"suites": [...]} or a single suite object.
    Entries without a valid shape are skipped.

    Raises:
        ValueError: Invalid JSON or no suites found
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e

    if isinstance(data, list):
        incoming = data
    elif isinstance(data, dict) and isinstance(data.get("suites"), list):
        incoming = data["suites"]
    elif validate_suite_shape(data):
        incoming = [data]
    else:
        raise ValueError("No suites found in JSON")

    return [normalize_suite(s) for s in incoming if validate_suite_shape(s)]


class SuiteLibrary:
    """Built-in suites (read-only, loaded once) and user suites."""

    def __init__(
        self,
        store: KeyValueStore,
        builtin_path: Path = BUILTIN_SUITES_PATH,
    ):
        self.store = store
        self.builtin_path = builtin_path
        self._builtin: Optional[list[TestSuite]] = None

    @property
    def builtin(self) -> list[TestSuite]:
        if self._builtin is None:
            self._builtin = load_builtin_suites(self.builtin_path)
        return self._builtin

    def custom(self) -> list[TestSuite]:
        return [
            normalize_suite(s)
            for s in self.store.get(CUSTOM_SUITES_KEY, [])
            if validate_suite_shape(s)
        ]

    def _set_custom(self, suites: list[TestSuite]) -> None:
        self.store.update(CUSTOM_SUITES_KEY, [s.to_dict() for s in suites])

    def all_suites(self) -> list[TestSuite]:
        return merge_suites(self.builtin, self.custom())

    def get(self, suite_id: str) -> TestSuite:
        for suite in self.all_suites():
            if suite.id == suite_id:
                return suite
        raise SuiteNotFoundError(suite_id)

    def get_or_first(self, suite_id: Optional[str]) -> Optional[TestSuite]:
        """Requested suite, else the first available one."""
        suites = self.all_suites()
        for suite in suites:
            if suite.id == suite_id:
                return suite
        return suites[0] if suites else None

    def save_custom(self, data: dict) -> TestSuite:
        """
        Insert or replace a custom suite by id.

        Raises:
            ValueError: The suite lacks an id, a name or a cases list
        """
        if not validate_suite_shape(data):
            raise ValueError("Invalid suite JSON: require id, name, cases[]")

        suite = normalize_suite(data)
        custom = self.custom()
        for i, existing in enumerate(custom):
            if existing.id == suite.id:
                custom[i] = suite
                break
        else:
            custom.append(suite)
        self._set_custom(custom)
        logger.info("Saved custom suite %s", suite.id)
        return suite

    def delete_custom(self, suite_id: str) -> None:
        custom = self.custom()
        remaining = [s for s in custom if s.id != suite_id]
        if len(remaining) == len(custom):
            raise SuiteNotFoundError(suite_id)
        self._set_custom(remaining)
        logger.info("Deleted custom suite %s", suite_id)

    def import_json(self, text: str) -> list[TestSuite]:
        """
        Merge suites from a JSON document into the custom set.

        Raises:
            ValueError: Invalid JSON, or no valid suite in the document
        """
        incoming = parse_suites_document(text)
        if not incoming:
            raise ValueError("No valid suites to import")
        self._set_custom(merge_suites(self.custom(), incoming))
        return incoming

    def export_json(self) -> str:
        """Custom suites as {"suites": [...]}."""
        payload = {"suites": [s.to_dict() for s in self.custom()]}
        return json.dumps(payload, indent=2)
