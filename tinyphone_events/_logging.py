# =============================================================================
# Tinyphone Events -- Package Logger
# =============================================================================

import logging

logger = logging.getLogger("tinyphone_events")
