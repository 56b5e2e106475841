"""
Helper functions for communicating with other services
"""
import logging
import os

import requests
from dotenv import load_dotenv

from .errors import NotFound, ServiceUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

SELLER_SERVICE_URL = os.getenv("SELLER_SERVICE_URL", "http://seller-service:8000")

SELLER_APPROVED = "approved"


def get_seller_status(seller_id: int) -> str:
    """Return the application status of a seller ("approved", "pending", "rejected", ...)."""
    try:
        response = requests.get(
            f"{SELLER_SERVICE_URL}/sellers/{seller_id}/status",
            timeout=5,
        )
    except requests.exceptions.RequestException as e:
        logger.warning("seller service unreachable: %s", e)
        raise ServiceUnavailable(f"Seller service is unavailable: {str(e)}")

    if response.status_code == 200:
        return str(response.json().get("status", "")).lower()
    if response.status_code == 404:
        raise NotFound(f"Seller with id {seller_id} not found")
    raise ServiceUnavailable(f"Failed to get seller status: {response.text}")


def is_seller_approved(seller_id: int) -> bool:
    return get_seller_status(seller_id) == SELLER_APPROVED
