# report.py
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Dict

from .model import Status, TestReportSummary, Thresholds

_NAME_ATTR = re.compile(r' name="')


def tag_report(text: str, config_name: str) -> str:
    """Prefix every name="..." attribute with the configuration name."""
    return _NAME_ATTR.sub(f' name="[{config_name}] ', text)


def _int_attr(attrs: Dict[str, str], *names: str) -> int:
    for name in names:
        raw = attrs.get(name)
        if raw is None:
            continue
        try:
            return int(float(raw))
        except ValueError:
            continue
    return 0


def parse_report(text: str, config_name: str) -> TestReportSummary:
    """
    Parse a JUnit XML report into totals.

    Accepts a <testsuite> root or a <testsuites> root (summed over its
    children). Raises ValueError when the document is not a JUnit report.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ValueError(f"Unreadable test report for {config_name}: {e}") from e

    if root.tag == "testsuite":
        suites = [root]
    elif root.tag == "testsuites":
        suites = root.findall("testsuite")
    else:
        raise ValueError(f"Not a JUnit report (root element <{root.tag}>)")

    tests = errors = failures = skips = 0
    for suite in suites:
        attrs = suite.attrib
        tests += _int_attr(attrs, "tests")
        errors += _int_attr(attrs, "errors")
        failures += _int_attr(attrs, "failures")
        skips += _int_attr(attrs, "skipped", "skips")

    return TestReportSummary(
        config_name=config_name,
        tests=tests,
        errors=errors,
        failures=failures,
        skips=skips,
    )


def _exceeds(count: int, limit) -> bool:
    return limit is not None and count > limit


def evaluate_thresholds(summary: TestReportSummary, thresholds: Thresholds) -> Status:
    """
    xUnit-style verdict for one configuration.

    Failed tests are failures plus errors. A missing limit never trips.
    """
    failed = summary.failures + summary.errors
    if _exceeds(failed, thresholds.failed_failure) or _exceeds(summary.skips, thresholds.skipped_failure):
        return Status.FAILURE
    if _exceeds(failed, thresholds.failed_unstable) or _exceeds(summary.skips, thresholds.skipped_unstable):
        return Status.UNSTABLE
    return Status.SUCCESS
