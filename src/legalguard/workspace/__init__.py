# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Workspace acquisition exports."""

from .git import VALID_URL_PREFIXES, build_clone_env, clone_repository, validate_git_url
from .manager import Workspace, WorkspaceManager

__all__ = [
    "VALID_URL_PREFIXES",
    "Workspace",
    "WorkspaceManager",
    "build_clone_env",
    "clone_repository",
    "validate_git_url",
]
