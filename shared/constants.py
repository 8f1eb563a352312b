"""
Shared constants for QuickCompare.
Used by both the scraping core and the backend gateway.
"""

# ---------------------------------------------------------------------------
# Target names (these are also the keys used on the wire)
# ---------------------------------------------------------------------------
TARGET_BLINKIT   = "blinkit"
TARGET_ZEPTO     = "zepto"
TARGET_INSTAMART = "instamart"

ALL_TARGETS = [
    TARGET_BLINKIT,
    TARGET_ZEPTO,
    TARGET_INSTAMART,
]

TARGET_DISPLAY_NAMES: dict[str, str] = {
    TARGET_BLINKIT:   "Blinkit",
    TARGET_ZEPTO:     "Zepto",
    TARGET_INSTAMART: "Instamart",
}

# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------
CURRENCY_SYMBOL = "₹"

# ---------------------------------------------------------------------------
# Inbound actions
# ---------------------------------------------------------------------------
ACTION_INITIALIZE         = "initialize"
ACTION_SET_LOCATION       = "setLocation"
ACTION_RETRY_SET_LOCATION = "retrySetLocation"
ACTION_SEARCH             = "search"
ACTION_ADD_TO_CART        = "addToCart"
ACTION_CLOSE              = "close"

# ---------------------------------------------------------------------------
# Outbound actions
# ---------------------------------------------------------------------------
ACTION_STATUS_UPDATE         = "statusUpdate"
ACTION_SERVICE_SEARCH_UPDATE = "serviceSearchUpdate"
ACTION_SEARCH_RESULTS        = "searchResults"
ACTION_UNKNOWN               = "unknownAction"
ACTION_PROCESS_MESSAGE       = "processMessage"

# ---------------------------------------------------------------------------
# Coarse lifecycle statuses (statusUpdate.status)
# ---------------------------------------------------------------------------
STATUS_LOADING   = "loading"
STATUS_COMPLETED = "completed"
STATUS_ERROR     = "error"
STATUS_SUCCESS   = "success"

# ---------------------------------------------------------------------------
# Strings a JSON response URL may carry when the site answered "nothing found".
# Such responses are never taken as the structured product payload.
# ---------------------------------------------------------------------------
NEGATIVE_RESULT_URL_MARKERS = ("empty_search", "no_results")
