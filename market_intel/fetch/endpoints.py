"""URL builders for eBay identity and search endpoints."""
from market_intel.config import config

_HOSTS = {
    "PRODUCTION": {
        "identity": "https://api.ebay.com/identity/v1/oauth2/token",
        "finding": "https://svcs.ebay.com/services/search/FindingService/v1",
    },
    "SANDBOX": {
        "identity": "https://api.sandbox.ebay.com/identity/v1/oauth2/token",
        "finding": "https://svcs.sandbox.ebay.com/services/search/FindingService/v1",
    },
}


def _hosts(environment: str | None) -> dict[str, str]:
    env = (environment or config.EBAY_ENVIRONMENT).upper()
    return _HOSTS.get(env, _HOSTS["SANDBOX"])


def get_token_url(environment: str | None = None) -> str:
    """Get the client-credentials token endpoint."""
    return _hosts(environment)["identity"]


def get_finding_url(environment: str | None = None) -> str:
    """Get the Finding API endpoint."""
    return _hosts(environment)["finding"]


def sold_search_params(app_id: str, keyword: str, page: int, page_size: int) -> dict[str, str]:
    """Query parameters for a completed/sold listing search."""
    return {
        "OPERATION-NAME": "findCompletedItems",
        "SERVICE-VERSION": "1.0.0",
        "SECURITY-APPNAME": app_id,
        "RESPONSE-DATA-FORMAT": "JSON",
        "REST-PAYLOAD": "",
        "keywords": keyword,
        "paginationInput.entriesPerPage": str(page_size),
        "paginationInput.pageNumber": str(page),
        "sortOrder": "EndTimeSoonest",
        "itemFilter(0).name": "SoldItemsOnly",
        "itemFilter(0).value": "true",
    }


def seller_search_params(app_id: str, seller_name: str, page: int, page_size: int) -> dict[str, str]:
    """Query parameters for a seller's active listing search."""
    return {
        "OPERATION-NAME": "findItemsAdvanced",
        "SERVICE-VERSION": "1.0.0",
        "SECURITY-APPNAME": app_id,
        "RESPONSE-DATA-FORMAT": "JSON",
        "REST-PAYLOAD": "",
        "itemFilter(0).name": "Seller",
        "itemFilter(0).value": seller_name,
        "paginationInput.entriesPerPage": str(page_size),
        "paginationInput.pageNumber": str(page),
        "sortOrder": "StartTimeNewest",
        "outputSelector": "SellerInfo",
    }
