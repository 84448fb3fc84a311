from __future__ import annotations
import os

WORK_ROOT = os.environ.get("MATRIXCI_WORK_ROOT", ".matrixci/work")
COLLECT_DIR = os.environ.get("MATRIXCI_COLLECT_DIR", ".matrixci/collected")
REPORT_FILE = os.environ.get("MATRIXCI_REPORT_FILE", "results.xml")

# Any non-empty value bypasses the publish_env_filter identity check.
ENV_PUBLISH_FORCE = os.environ.get("MATRIXCI_ENV_PUBLISH_FORCE") or None

BUILD_URL = os.environ.get("BUILD_URL") or None
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")
GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN") or None

CONDA_VERSION = os.environ.get("MATRIXCI_CONDA_VERSION", "4.5.12")
CONDA_INSTALLER_VERSION = os.environ.get("MATRIXCI_CONDA_INSTALLER_VERSION", "4.5.12")
CONDA_BASE_URL = os.environ.get("MATRIXCI_CONDA_BASE_URL", "https://repo.continuum.io/miniconda")
