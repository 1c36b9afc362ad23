"""Control API -- JSON routes for trader status, decisions and Kelly tuning."""

from autotrader.api.app import create_api_app

__all__ = ["create_api_app"]
