# Copyright New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""tufcore: trust verification core for secure software updates.
"""

import tufcore.api
import tufcore.client

# This value is used in the requests user agent.
__version__ = "1.0.0"
__all__ = [
    tufcore.api.__name__,
    tufcore.client.__name__,
]
