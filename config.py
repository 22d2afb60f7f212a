"""
Configuration des fournisseurs de manhwa et des paramètres du service
Les valeurs surchargeables viennent de l'environnement
"""

import os
from typing import Dict
from dataclasses import dataclass


@dataclass
class ProviderConfig:
    base_url: str
    priority: int
    enabled: bool = True


# Fournisseurs, essayés par priorité croissante
PROVIDERS_CONFIG: Dict[str, ProviderConfig] = {
    "manhuaplus": ProviderConfig(
        base_url=os.environ.get("MANHUAPLUS_URL", "https://manhuaplus.top"),
        priority=1,
    ),

    "manhuaus": ProviderConfig(
        base_url=os.environ.get("MANHUAUS_URL", "https://manhuaus.com"),
        priority=2,
    ),

    "mangadex": ProviderConfig(
        base_url="https://api.mangadex.org",
        priority=3,
    ),
}

PROVIDER_PRIORITIES: Dict[str, int] = {
    key: provider.priority
    for key, provider in PROVIDERS_CONFIG.items()
    if provider.enabled
}

# Durées de vie du cache par opération (secondes)
CACHE_TTLS = {
    "search": 300,
    "latest": 120,
    "info": 600,
    "read": 1800,
    "genre": 900,
    "genres": 3600,
    "advanced_search": 300,
}

# Rate limiting (par fournisseur)
RATE_LIMIT = {
    "requests_per_second": float(os.environ.get("REQUESTS_PER_SECOND", 2.0)),
}

# Retries
RETRY = {
    "max_retries": 3,
    "retry_delay": 1.0,  # 1s, 2s, 4s...
}

# Timeouts (secondes)
TIMEOUTS = {
    "request": 30,
    "scrape_fast": 10,
    "scrape_dynamic": 20,
    "network_settle": 3,
    "relay": 30,
}

# Navigateur headless
BROWSER = {
    "headless": os.environ.get("BROWSER_HEADLESS", "true").lower() != "false",
}

# Serveur
PORT = int(os.environ.get("PORT", 8000))
DEBUG = os.environ.get("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
