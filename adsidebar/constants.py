"""Identifiers and fixed values shared across the sidebar pipeline."""

PANEL_ID = "adsidebar_container"
CONTAINER_ID = "adsidebar_ad_container"
REGION_CLASS = "adsidebar_ad_div"
STATUS_CLASS = "adsidebar_status"

# Appended to an existing image source to force a re-fetch after relocation.
CACHE_BUST_SUFFIX = "?adsidebar"

# Attribute carried by the synthetic script that signals a write batch has loaded.
WRITE_MARKER_ATTR = "data-adsidebar-marker"

# Ad box edge length; regions larger than this are scaled when scaling is on.
AD_BOX_SIZE = 200
AD_SCALE_FACTOR = 0.5
