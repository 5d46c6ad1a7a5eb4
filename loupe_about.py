# -*- coding: utf-8 -*-
# Loupe: Colorimetry and similarity search for color standards.
#
# Copyright (c) 2026 opticsWolf
#
# SPDX-License-Identifier: LGPL-3.0-or-later

"""
Project metadata for Loupe.
"""

from typing import Final

# Metadata Definitions
__title__: Final[str] = "Loupe"
__description__: Final[str] = (
    "Spectral-to-Lab integration, color-difference metrics and a cached "
    "similarity search engine for color standards."
)
__version__: Final[str] = "0.1.0"
__author__: Final[str] = "opticsWolf"
__license__: Final[str] = "LGPL-3.0-or-later"
__copyright__: Final[str] = "Copyright (c) 2026 opticsWolf"

def metadata_summary() -> dict[str, str]:
    """Returns a dictionary of project metadata for introspection."""
    return {
        "title": __title__,
        "version": __version__,
        "license": __license__,
        "description": __description__,
        "copyright": __copyright__,
    }
