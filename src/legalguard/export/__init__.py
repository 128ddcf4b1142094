# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Report exports."""

from .spdx import build_spdx_document, repository_name

__all__ = ["build_spdx_document", "repository_name"]
